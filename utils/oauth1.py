"""
OAuth 1.0a request signing (HMAC-SHA1) for httpx requests
"""

from typing import Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode

from oauthlib.oauth1 import Client, SIGNATURE_HMAC_SHA1

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class OAuth1Signer:
    """Builds the `Authorization` header for consumer + optional token credentials"""

    def __init__(self, consumer_key: str, consumer_secret: str):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret

    def authorization_header(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        token_secret: Optional[str] = None,
        form: Optional[Mapping[str, str]] = None,
        callback_uri: Optional[str] = None,
        verifier: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Sign one request.

        Query parameters in `url` and form-encoded body parameters in `form` are part of
        the signature base string; JSON and multipart bodies are not.
        """
        client = Client(
            self.consumer_key,
            client_secret=self.consumer_secret,
            resource_owner_key=token,
            resource_owner_secret=token_secret,
            callback_uri=callback_uri,
            verifier=verifier,
            signature_method=SIGNATURE_HMAC_SHA1,
        )
        if form:
            _, headers, _ = client.sign(
                url,
                http_method=method.upper(),
                body=urlencode(form),
                headers={"Content-Type": FORM_CONTENT_TYPE},
            )
        else:
            _, headers, _ = client.sign(url, http_method=method.upper())
        return {"Authorization": headers["Authorization"]}


def parse_form_response(text: str) -> Dict[str, str]:
    """Parse an `a=b&c=d` token endpoint response"""
    return dict(parse_qsl(text or "", keep_blank_values=True))
