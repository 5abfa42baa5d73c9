import unittest
from unittest.mock import patch

import pycurl

from gcflab.gcp.triggers import HTTPTrigger


def fake_curl(curl, body: bytes, status: int):
    """Make a mocked Curl write `body` on perform and report `status`."""
    options = {}
    curl.setopt.side_effect = lambda key, value: options.__setitem__(key, value)
    curl.perform.side_effect = lambda: options[pycurl.WRITEFUNCTION](body)
    curl.getinfo.return_value = status
    return options


class TestHTTPTrigger(unittest.TestCase):
    @patch("gcflab.gcp.triggers.pycurl.Curl")
    def test_invoke(self, curl_type):
        options = fake_curl(curl_type.return_value, b"HTTP with Node.js in GCF 2nd gen!", 200)
        status, body = HTTPTrigger("https://fn.a.run.app", timeout=10).invoke()
        self.assertEqual(status, 200)
        self.assertEqual(body, "HTTP with Node.js in GCF 2nd gen!")
        self.assertEqual(options[pycurl.URL], "https://fn.a.run.app")
        self.assertEqual(options[pycurl.TIMEOUT], 10)
        curl_type.return_value.close.assert_called_once()

    @patch("gcflab.gcp.triggers.pycurl.Curl")
    def test_error_status(self, curl_type):
        fake_curl(curl_type.return_value, b"Forbidden", 403)
        with self.assertRaises(RuntimeError) as ctx:
            HTTPTrigger("https://fn.a.run.app").invoke()
        self.assertIn("Forbidden", str(ctx.exception))

    @patch("gcflab.gcp.triggers.pycurl.Curl")
    def test_connection_error(self, curl_type):
        curl_type.return_value.perform.side_effect = pycurl.error(6, "Could not resolve host")
        with self.assertRaises(RuntimeError):
            HTTPTrigger("https://missing.a.run.app").invoke()
        curl_type.return_value.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
