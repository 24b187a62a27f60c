import requests
from typing import Optional

from config import load_settings
from errors import ERRORS_BY_STATUS, CONNECTION_FAILED, ConnectionFailedError


class FitnessClient:
    """Simple REST client for the client registry and login endpoints."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token: Optional[str] = None

    @classmethod
    def from_settings(
        cls, base_url: str = "http://localhost:8000", yaml_path: str = "settings.yaml"
    ) -> "FitnessClient":
        """Build a client using the configured ``request_timeout``."""
        settings = load_settings(yaml_path)
        return cls(base_url, timeout=settings.request_timeout)

    def _call(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["X-Session-Token"] = self.token
        try:
            resp = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ConnectionFailedError(CONNECTION_FAILED, str(e))
        if resp.status_code >= 400:
            try:
                code = resp.json().get("detail")
            except ValueError:
                code = None
            cls = ERRORS_BY_STATUS.get(resp.status_code)
            if cls is None:
                resp.raise_for_status()
            raise cls(code if isinstance(code, str) else None)
        return resp.json()

    def login(self, email: str, password: str) -> dict:
        data = self._call("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data["user"]

    def logout(self) -> None:
        self._call("POST", "/auth/logout")
        self.token = None

    def create_client(
        self,
        name: str,
        email: str,
        phone: Optional[str] = None,
        starter_password: Optional[str] = None,
    ) -> dict:
        return self._call(
            "POST",
            "/clients",
            json={
                "name": name,
                "email": email,
                "phone": phone,
                "starterPassword": starter_password,
            },
        )

    def list_clients(self) -> list:
        return self._call("GET", "/clients")

    def delete_client(self, user_id: str) -> bool:
        return self._call("DELETE", f"/clients/{user_id}")["success"]

    def create_invitation(self, name: Optional[str] = None, email: Optional[str] = None) -> dict:
        return self._call("POST", "/invitations", json={"name": name, "email": email})

    def list_invitations(self) -> list:
        return self._call("GET", "/invitations")
