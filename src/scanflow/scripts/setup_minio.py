import os
from scanflow.services.minio.minio_service import create_minio_client

buckets = [
    os.getenv("MINIO_SOURCE_BUCKET", "scans"),
    os.getenv("MINIO_DOCUMENT_BUCKET", "documents"),
    os.getenv("MINIO_EXPORT_BUCKET", "exports"),
]

if __name__ == "__main__":
    print("Creating minio client")
    client = create_minio_client()

    for bucket in buckets:
        if client.bucket_exists(bucket):
            print(f"{bucket} bucket exists")
            continue
        print(f"Creating bucket {bucket}")
        client.make_bucket(bucket)
