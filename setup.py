#!/usr/bin/env python3

import os
from setuptools import setup, find_packages

here = os.path.abspath(os.path.dirname(__file__))

readme_path = os.path.join(here, "README.md")
with open(readme_path, encoding="utf-8") as f:
    long_description = f.read()

version_path = os.path.join(here, "gcflab", "version.py")
version_dict = {}
with open(version_path) as f:
    exec(f.read(), version_dict)
__version__ = version_dict.get("__version__", "1.0.0")

# Core requirements
install_requires = []
req_path = os.path.join(here, "requirements.txt")
if os.path.exists(req_path):
    with open(req_path, encoding="utf-8") as f:
        install_requires = [
            line.strip() for line in f if not line.startswith("#") and line.strip()
        ]
else:
    # Define core requirements manually if file not found
    install_requires = [
        "click>=8.0",
        "docker>=4.2.0",
        "pycurl>=7.43",
    ]

extras_require = {"test": []}

for extra in extras_require.keys():
    req_file = os.path.join(here, f"requirements.{extra}.txt")
    if os.path.exists(req_file):
        with open(req_file, encoding="utf-8") as f:
            extras_require[extra] = [
                line.strip() for line in f if not line.startswith("#") and line.strip()
            ]

setup(
    name="gcflab",
    version=__version__,
    description="Cloud Functions lab automation with retrying deployments",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Distributed Computing",
        "Topic :: System :: Installation/Setup",
    ],
    keywords="serverless, faas, gcp, cloud-functions, deployment, retry",
    packages=find_packages(where=here, exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "gcflab=gcflab.cli:main",
        ],
    },
    package_data={
        "gcflab": ["lab.json"],
    },
)
