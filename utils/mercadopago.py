"""Mercado Pago payments API client (PIX charges and status checks)."""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

import requests

from core.settings import MERCADOPAGO_ACCESS_TOKEN, MERCADOPAGO_API_URL

logger = logging.getLogger(__name__)

DEFAULT_PAYER_EMAIL = "cliente@example.com"


class PaymentProviderError(Exception):
    pass


@dataclass
class PixCharge:
    payment_id: str
    qr_code: str
    qr_code_base64: str


class MercadoPagoClient:
    def __init__(
        self,
        access_token: Optional[str] = MERCADOPAGO_ACCESS_TOKEN,
        base_url: str = MERCADOPAGO_API_URL,
        timeout: float = 15,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self, idempotent: bool = False) -> dict:
        if not self.access_token:
            raise PaymentProviderError("Mercado Pago access token is not configured.")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }
        if idempotent:
            headers["X-Idempotency-Key"] = str(uuid.uuid4())
        return headers

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = requests.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise PaymentProviderError(f"Payment provider unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            logger.error(f"[MERCADOPAGO] ❌ {method} {path} -> {response.status_code}: {data}")
            raise PaymentProviderError(data.get("message") or "Payment provider error.")
        return data

    def create_pix_payment(
        self, amount: float, email: str, cpf: str, description: str
    ) -> PixCharge:
        body = {
            "transaction_amount": round(float(amount), 2),
            "description": description,
            "payment_method_id": "pix",
            "payer": {
                "email": email or DEFAULT_PAYER_EMAIL,
                "identification": {"type": "CPF", "number": re.sub(r"\D", "", cpf or "")},
            },
        }
        data = self._request("POST", "/v1/payments", json=body, headers=self._headers(idempotent=True))
        transaction_data = data.get("point_of_interaction", {}).get("transaction_data", {})
        logger.info(f"[MERCADOPAGO] ✅ PIX charge {data.get('id')} created ({body['transaction_amount']})")
        return PixCharge(
            payment_id=str(data["id"]),
            qr_code=transaction_data.get("qr_code", ""),
            qr_code_base64=transaction_data.get("qr_code_base64", ""),
        )

    def get_payment_status(self, payment_id: str) -> str:
        data = self._request("GET", f"/v1/payments/{payment_id}", headers=self._headers())
        return data.get("status", "")
