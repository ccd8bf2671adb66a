# app/services/r2_client.py

from functools import lru_cache
from typing import Optional

import boto3

from app.config import settings


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client(
        "s3",
        endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        region_name="auto"
    )


def to_presigned_url(key: str, expires: int = 3600, filename: Optional[str] = None):
    params = {"Bucket": settings.r2_bucket_name, "Key": key}
    if filename:
        filename = filename.replace('"', "'")
        params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'

    return get_s3_client().generate_presigned_url(
        "get_object",
        Params=params,
        ExpiresIn=expires
    )
