from __future__ import annotations

import base64
import json
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any


class RazorpayError(RuntimeError):
    pass


class RazorpayAuthError(RazorpayError):
    pass


class RazorpayRateLimited(RazorpayError):
    pass


@dataclass(frozen=True)
class RazorpayClient:
    key_id: str
    key_secret: str
    base_url: str = "https://api.razorpay.com/v1"
    timeout_seconds: int = 30

    def _auth_header(self) -> str:
        token = f"{self.key_id}:{self.key_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def request_json(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        retries: int = 2,
    ) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        data = json.dumps(body).encode("utf-8") if body is not None else None

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method=method)
                req.add_header("Authorization", self._auth_header())
                req.add_header("Accept", "application/json")
                if data is not None:
                    req.add_header("Content-Type", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except ValueError as e:
                        raise RazorpayError(f"Invalid JSON from Razorpay ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 401:
                    raise RazorpayAuthError("Invalid Razorpay credentials") from e
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = RazorpayRateLimited("Rate limited (429)")
                    continue
                if e.code >= 500:
                    time.sleep(min(1 * (attempt + 1), 5))
                    last_err = RazorpayError(f"HTTP {e.code} from Razorpay")
                    continue
                try:
                    body_text = e.read().decode("utf-8", errors="ignore")
                except OSError:
                    body_text = ""
                raise RazorpayError(f"HTTP {e.code} from Razorpay: {body_text[:300]}") from e
            except (urllib.error.URLError, TimeoutError, OSError) as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        raise RazorpayError(f"Razorpay request failed after retries: {last_err}")

    def create_order(self, *, amount_paise: int, currency: str, receipt: str, notes: dict[str, str] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"amount": int(amount_paise), "currency": currency, "receipt": receipt}
        if notes:
            payload["notes"] = notes
        j = self.request_json("POST", "/orders", body=payload)
        if not isinstance(j, dict) or not j.get("id"):
            raise RazorpayError("Razorpay order response missing id")
        return j

