"""
Bucket policy documents.
"""

POLICY_VERSION = "2012-10-17"


def build_public_read_policy(bucket_name: str) -> dict:
    """Policy allowing anonymous GET on every object in the bucket."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket_name}/*"],
            }
        ],
    }
