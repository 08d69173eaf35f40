import os
import logging
from io import BytesIO
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from minio import Minio
from minio.commonconfig import CopySource

def create_minio_client():
    return Minio(endpoint=os.getenv("MINIO_ENDPOINT"),
                access_key=os.getenv("MINIO_ACCESS_KEY"),
                secret_key=os.getenv("MINIO_SECRET_KEY"),
                secure=False)

@dataclass
class SourceEntry:
    name: str
    path: str
    is_dir: bool
    created_at: Optional[datetime] = None


class MinioSourceLocation:
    """Watch-folder adapter over a MinIO bucket: list, download, move."""

    def __init__(self, client, bucket):
        self.client = client
        self.bucket = bucket

    def list_entries(self, prefix):
        prefix = prefix.strip('/')
        prefix = f"{prefix}/" if prefix else ''
        entries = []
        for obj in self.client.list_objects(self.bucket, prefix=prefix, recursive=False):
            path = obj.object_name.rstrip('/')
            name = path[len(prefix):] if path.startswith(prefix) else path
            if not name:
                continue
            entries.append(SourceEntry(name=name, path=path, is_dir=obj.is_dir, created_at=obj.last_modified))
        return entries

    def download(self, path):
        response = self.client.get_object(self.bucket, path)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def move(self, source_path, destination_path):
        self.client.copy_object(self.bucket, destination_path, CopySource(self.bucket, source_path))
        self.client.remove_object(self.bucket, source_path)
        logging.info(f"Moved {source_path} to {destination_path} in bucket {self.bucket}")


class MinioObjectStore:
    """Blob storage for imported documents and batch exports."""

    def __init__(self, client, bucket):
        self.client = client
        self.bucket = bucket

    def upload(self, key, data: bytes, content_type='application/octet-stream'):
        self.client.put_object(self.bucket, key, BytesIO(data), length=len(data), content_type=content_type)
        return key

    def download(self, key):
        response = self.client.get_object(self.bucket, key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def presigned_url(self, key, expires=timedelta(hours=1)):
        return self.client.presigned_get_object(self.bucket, key, expires=expires)

    def reference(self, key):
        return f"minio://{self.bucket}/{key}"
