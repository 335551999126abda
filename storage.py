"""
Artifact store clients.
SupabaseStorage talks to the Supabase Storage REST API with requests;
LocalStorage mirrors the same interface on the local filesystem for development.
"""

import os
import logging
import mimetypes
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from config import (
    STORAGE_BACKEND,
    SUPABASE_URL,
    SUPABASE_SERVICE_KEY,
    STORAGE_BUCKET,
    STORAGE_TIMEOUT,
    LOCAL_STORAGE_ROOT,
    LOCAL_STORAGE_PUBLIC_URL,
)
from exceptions import StorageApiError, StorageError, StorageResponseFormatError


class ArtifactStore(ABC):
    """Typed interface over a blob store bucket."""

    @abstractmethod
    def upload(self, remote_path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        pass

    @abstractmethod
    def download(self, remote_path: str) -> bytes:
        pass

    @abstractmethod
    def list(self, prefix: str, search: Optional[str] = None, limit: int = 1000) -> List[Dict[str, Any]]:
        """
        Lists the direct children of a prefix.
        Files carry metadata with a "mimetype"; sub-prefixes have metadata None.
        """
        pass

    @abstractmethod
    def get_public_url(self, remote_path: str) -> str:
        pass


class SupabaseStorage(ArtifactStore):
    """Supabase Storage over its REST API."""

    def __init__(self, base_url: str, service_key: str, bucket: str = STORAGE_BUCKET,
                 timeout: float = STORAGE_TIMEOUT, session: Optional[requests.Session] = None):
        if not base_url or not service_key:
            raise StorageError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        })

    def _object_url(self, remote_path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(remote_path)}"

    def _parse_json(self, response: requests.Response):
        try:
            return response.json()
        except ValueError:
            content_type = response.headers.get("content-type", "")
            preview = response.text[:200]
            logging.error(f"❌ Storage returned a non-JSON body (Status: {response.status_code}, {content_type}): {preview}")
            raise StorageResponseFormatError(
                f"Storage API returned {content_type or 'an unparseable body'} (Status: {response.status_code})"
            )

    def _raise_for_error(self, response: requests.Response, payload) -> None:
        if response.ok:
            return
        message = payload.get("message") or payload.get("error") if isinstance(payload, dict) else str(payload)
        status_code = response.status_code
        if isinstance(payload, dict) and str(payload.get("statusCode", "")).isdigit():
            status_code = int(payload["statusCode"])
        raise StorageApiError(f"Supabase upload failed ({status_code}): {message}", status_code=status_code)

    def upload(self, remote_path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        response = self.session.post(
            self._object_url(remote_path),
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
            timeout=self.timeout,
        )
        payload = self._parse_json(response)
        self._raise_for_error(response, payload)

    def download(self, remote_path: str) -> bytes:
        response = self.session.get(self._object_url(remote_path), timeout=self.timeout)
        if not response.ok:
            raise StorageApiError(f"Download failed ({response.status_code}): {remote_path}",
                                  status_code=response.status_code)
        return response.content

    def list(self, prefix: str, search: Optional[str] = None, limit: int = 1000) -> List[Dict[str, Any]]:
        body = {"prefix": prefix, "limit": limit, "offset": 0,
                "sortBy": {"column": "name", "order": "asc"}}
        if search:
            body["search"] = search
        response = self.session.post(
            f"{self.base_url}/storage/v1/object/list/{self.bucket}",
            json=body,
            timeout=self.timeout,
        )
        payload = self._parse_json(response)
        self._raise_for_error(response, payload)
        return payload or []

    def get_public_url(self, remote_path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(remote_path)}"


class LocalStorage(ArtifactStore):
    """Bucket emulated as a directory tree."""

    def __init__(self, root: str = LOCAL_STORAGE_ROOT, public_url: str = LOCAL_STORAGE_PUBLIC_URL):
        self.root = os.path.abspath(root)
        self.public_url = public_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def _path(self, remote_path: str) -> str:
        path = os.path.abspath(os.path.join(self.root, remote_path))
        if not path.startswith(self.root):
            raise StorageError(f"Path escapes the storage root: {remote_path}")
        return path

    def upload(self, remote_path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        path = self._path(remote_path)
        if os.path.exists(path) and not upsert:
            raise StorageApiError(f"The resource already exists: {remote_path}", status_code=409)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    def download(self, remote_path: str) -> bytes:
        path = self._path(remote_path)
        if not os.path.isfile(path):
            raise StorageApiError(f"Object not found: {remote_path}", status_code=404)
        with open(path, "rb") as f:
            return f.read()

    def list(self, prefix: str, search: Optional[str] = None, limit: int = 1000) -> List[Dict[str, Any]]:
        path = self._path(prefix)
        if not os.path.isdir(path):
            return []
        items = []
        for name in sorted(os.listdir(path)):
            if search and search not in name:
                continue
            full = os.path.join(path, name)
            if os.path.isdir(full):
                items.append({"name": name, "id": None, "metadata": None})
            else:
                mimetype = mimetypes.guess_type(name)[0] or "application/octet-stream"
                items.append({"name": name, "id": name,
                              "metadata": {"mimetype": mimetype, "size": os.path.getsize(full)}})
        return items[:limit]

    def get_public_url(self, remote_path: str) -> str:
        return f"{self.public_url}/{quote(remote_path)}"


def get_storage() -> ArtifactStore:
    # Supabase by default, switched via env var.
    if STORAGE_BACKEND == "local":
        return LocalStorage()
    return SupabaseStorage(SUPABASE_URL, SUPABASE_SERVICE_KEY)
