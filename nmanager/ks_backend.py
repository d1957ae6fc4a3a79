"""Periodically computes which users may receive notifications of each namespace."""

from __future__ import annotations

import json
import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any

import requests

from nmanager.utils import HttpStatusError, NotificationError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(minutes=5)
DEFAULT_BATCH_SIZE = 500
TOKEN_FILE = "/var/run/secrets/kubesphere.io/serviceaccount/token"

_CLUSTERS_PATH = "/kapis/cluster.kubesphere.io/v1alpha1/clusters"
_USERS_PATH = "/kapis/iam.kubesphere.io/v1beta1/users"
_NAMESPACES_PATH = "/clusters/{cluster}/api/v1/namespaces"
_REVIEWS_PATH = "/clusters/{cluster}/kapis/iam.kubesphere.io/v1beta1/subjectaccessreviews"

_ERRORS = (requests.RequestException, NotificationError, ValueError, OSError)

Tenants = dict[str, list[str]]


def _seconds(value: timedelta | float) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


def _base_url(host: str) -> str:
    if "://" not in host:
        host = "http://" + host
    return host.rstrip("/")


def _names(document: Any) -> list[str]:
    items = document.get("items") if isinstance(document, dict) else None
    return [(item.get("metadata") or {}).get("name", "") for item in items or []]


def _review(namespace: str, user: str) -> dict[str, Any]:
    return {
        "metadata": {},
        "spec": {
            "resourceAttributes": {
                "namespace": namespace,
                "verb": "get",
                "group": "notification.kubesphere.io",
                "version": "v2beta2",
                "resource": "receivenotification",
            },
            "user": user,
            "groups": [],
        },
        "status": {"allowed": False},
    }


class Backend:
    """Keeps a map of cluster to namespace to the users allowed to receive notifications."""

    def __init__(
        self,
        host: str,
        username: str = "",
        password: str = "",
        interval: timedelta | float = DEFAULT_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = _base_url(host)
        self._basic_auth = (username, password) if username and password else None
        self.interval = _seconds(interval)
        self.batch_size = batch_size
        self._session = session if session is not None else requests.Session()
        self._tenants: dict[str, Tenants | None] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _auth_kwargs(self) -> dict[str, Any]:
        if self._basic_auth is not None:
            return {"auth": self._basic_auth}
        try:
            token = Path(TOKEN_FILE).read_text(encoding="utf-8").strip()
        except OSError as err:
            logger.error("read token file error, %s", err)
            return {}
        return {"headers": {"Authorization": f"Bearer {token}"}} if token else {}

    def _request(self, method: str, path: str, payload: Any = None) -> Any:
        kwargs = self._auth_kwargs()
        if payload is not None:
            kwargs["json"] = payload
        response = self._session.request(method, self.base_url + path, **kwargs)
        try:
            status = response.status_code
            body = response.content
        finally:
            response.close()
        if not 200 <= status < 300:
            raise HttpStatusError(status, body or b"")
        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError as err:
            raise NotificationError(f"invalid response from {path}: {err}") from err

    def from_namespace(self, cluster: str, namespace: str) -> list[str] | None:
        """The users of ``namespace`` in ``cluster``, or None if unknown."""
        with self._lock:
            tenants = self._tenants.get(cluster)
            if not tenants:
                return None
            users = tenants.get(namespace)
            return list(users) if users is not None else None

    def reload(self) -> None:
        """Rebuild the tenant map; a cluster that fails keeps its previous entry."""
        logger.info("start reload tenant")
        try:
            try:
                clusters = self.list_clusters()
            except _ERRORS as err:
                logger.error("list clusters error, %s", err)
                clusters = []

            try:
                users = self.list_users()
            except _ERRORS as err:
                logger.error("list users error, %s", err)
                return

            with self._lock:
                previous = self._tenants
            tenants: dict[str, Tenants | None] = {}
            for cluster in clusters:
                try:
                    tenants[cluster] = self._tenants_of_cluster(cluster, users)
                except _ERRORS as err:
                    logger.error("get tenant info from %s error, %s", cluster, err)
                    tenants[cluster] = previous.get(cluster)
            with self._lock:
                self._tenants = tenants
        finally:
            logger.info("end reload tenant")

    def _tenants_of_cluster(self, cluster: str, users: list[str]) -> Tenants:
        namespaces = self.list_namespaces(cluster)
        tenants: Tenants = {}
        items: list[dict[str, Any]] = []
        for namespace in namespaces:
            for user in users:
                items.append(_review(namespace, user))
                if len(items) >= self.batch_size:
                    self.batch_request(cluster, items, tenants)
                    items = []
        self.batch_request(cluster, items, tenants)
        return tenants

    def run(self) -> None:
        """Reload now, then again every interval in a background thread."""
        self.reload()
        self._stop.clear()

        def loop() -> None:
            while not self._stop.wait(self.interval):
                self.reload()

        self._thread = threading.Thread(target=loop, name="tenant-reload", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the periodic reload."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def list_clusters(self) -> list[str]:
        return _names(self._request("GET", _CLUSTERS_PATH))

    def list_users(self) -> list[str]:
        return _names(self._request("GET", _USERS_PATH))

    def list_namespaces(self, cluster: str) -> list[str]:
        return _names(self._request("GET", _NAMESPACES_PATH.format(cluster=cluster)))

    def batch_request(
        self, cluster: str, items: list[dict[str, Any]], tenants: Tenants
    ) -> None:
        """Review access for ``items`` and add the allowed users to ``tenants``."""
        try:
            result = self._request(
                "POST", _REVIEWS_PATH.format(cluster=cluster), {"metadata": {}, "items": items}
            )
        except _ERRORS as err:
            logger.error("get access view error: %s", err)
            raise
        reviewed = result.get("items") if isinstance(result, dict) else None
        for item in reviewed or []:
            if not (item.get("status") or {}).get("allowed"):
                continue
            spec = item.get("spec") or {}
            namespace = (spec.get("resourceAttributes") or {}).get("namespace", "")
            tenants.setdefault(namespace, []).append(spec.get("user", ""))


__all__ = ["Backend", "DEFAULT_BATCH_SIZE", "DEFAULT_INTERVAL", "TOKEN_FILE"]