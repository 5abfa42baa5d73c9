"""HTTP invocation of deployed Cloud Functions.

Classes:
    HTTPTrigger: Calls the HTTPS endpoint of a function

Example:
    Calling a freshly deployed function:

        trigger = HTTPTrigger("https://nodejs-http-function-abc-uc.a.run.app")
        status, body = trigger.invoke()
"""

from io import BytesIO
from typing import Tuple

import pycurl

from gcflab.utils import LoggingBase


class HTTPTrigger(LoggingBase):
    """HTTPS endpoint of a function.

    Attributes:
        url: Invocation URL of the function
        timeout: Maximum number of seconds of a single request
    """

    @staticmethod
    def typename() -> str:
        return "GCP.HTTPTrigger"

    def __init__(self, url: str, timeout: int = 60) -> None:
        super().__init__()
        self.url = url
        self.timeout = timeout

    def invoke(self) -> Tuple[int, str]:
        """Send a GET request to the function.

        Returns:
            Status code and decoded response body

        Raises:
            RuntimeError: If the request fails or returns a non-2xx status
        """
        c = pycurl.Curl()
        data = BytesIO()
        c.setopt(pycurl.URL, self.url)
        c.setopt(pycurl.WRITEFUNCTION, data.write)
        c.setopt(pycurl.FOLLOWLOCATION, True)
        c.setopt(pycurl.TIMEOUT, self.timeout)
        try:
            c.perform()
            status_code = c.getinfo(pycurl.RESPONSE_CODE)
        except pycurl.error as e:
            raise RuntimeError(f"Invocation on URL {self.url} failed: {e}")
        finally:
            c.close()

        body = data.getvalue().decode("utf-8", errors="replace")
        if status_code < 200 or status_code >= 300:
            self.logging.error(
                "Invocation on URL {} failed with status code {}!".format(self.url, status_code)
            )
            self.logging.error("Output: {}".format(body))
            raise RuntimeError(f"Failed invocation of function! Output: {body}")

        self.logging.debug("Invoke of function was successful")
        return status_code, body
