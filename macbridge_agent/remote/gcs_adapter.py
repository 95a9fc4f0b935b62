"""
Google Cloud Storage adapter implementation.

Publishes artifacts to Google Cloud Storage using the google-cloud-storage
library.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from google.cloud import storage
from google.cloud.exceptions import GoogleCloudError, Forbidden, NotFound
from google.auth.exceptions import GoogleAuthError
from requests.exceptions import RequestException

from macbridge_agent.remote.base import StorageAdapter


logger = logging.getLogger("macbridge.agent.remote.gcs")


class GCSAdapter(StorageAdapter):
    """
    Google Cloud Storage adapter.

    Credentials Format:
        {
            "service_account_json": "{...}"  # JSON string of service account key
        }

    Without credentials the client falls back to application default
    credentials.
    """

    def __init__(
        self,
        bucket: str,
        credentials: Optional[Dict[str, Any]] = None,
        public_base_url: Optional[str] = None,
        client: Any = None,
    ):
        """
        Initialize GCS adapter.

        Raises:
            ValueError: If the bucket is empty or the service account JSON is invalid
        """
        super().__init__(bucket, credentials, public_base_url)

        if not bucket:
            raise ValueError("GCS bucket is required")

        if client is not None:
            self.client = client
        elif "service_account_json" in self.credentials:
            try:
                service_account_info = json.loads(self.credentials["service_account_json"])
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid service_account_json format: {str(e)}")

            try:
                self.client = storage.Client.from_service_account_info(service_account_info)
            except Exception as e:
                raise ValueError(f"Failed to create GCS client from service account: {str(e)}")
        else:
            self.client = storage.Client()

    def _blob(self, key: str):
        return self.client.bucket(self.bucket).blob(key)

    def upload_file(self, local_path: Path, key: str, content_type: str = "application/zip") -> None:
        try:
            self._blob(key).upload_from_filename(str(local_path), content_type=content_type)
            logger.info(f"Uploaded {local_path.name} to gs://{self.bucket}/{key}")
        except Forbidden as e:
            logger.error(f"GCS permission error bucket={self.bucket} error={e}")
            raise PermissionError(
                f"Access denied to GCS bucket '{self.bucket}'. "
                f"Check service account has storage.objects.create permission. Error: {str(e)}"
            )
        except NotFound as e:
            raise PermissionError(f"GCS bucket '{self.bucket}' not found: {str(e)}")
        except (GoogleCloudError, GoogleAuthError, RequestException) as e:
            raise ConnectionError(f"GCS upload to '{self.bucket}' failed: {str(e)}")

    def make_public(self, key: str) -> None:
        try:
            self._blob(key).make_public()
        except Forbidden as e:
            raise PermissionError(
                f"Cannot make gs://{self.bucket}/{key} public "
                f"(uniform bucket-level access may be enabled): {str(e)}"
            )
        except (GoogleCloudError, GoogleAuthError, RequestException) as e:
            raise ConnectionError(f"GCS ACL update failed: {str(e)}")

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._blob(key).public_url

    def test_connection(self) -> Tuple[bool, str]:
        """Test GCS connection by fetching the bucket metadata."""
        try:
            self.client.get_bucket(self.bucket)
            logger.info(f"GCS connection test successful bucket={self.bucket}")
            return True, f"Connected to Google Cloud Storage bucket '{self.bucket}'."

        except GoogleAuthError as e:
            logger.error(f"GCS authentication error: {e}")
            return False, f"Invalid service account credentials: {str(e)}"

        except Forbidden as e:
            logger.error(f"GCS permission error: {e}")
            return False, f"Service account lacks required permissions. Check IAM roles: {str(e)}"

        except NotFound:
            return False, f"Bucket '{self.bucket}' does not exist."

        except GoogleCloudError as e:
            logger.error(f"GCS connection test failed: {e}")
            return False, f"GCS connection failed: {str(e)}"

        except RequestException as e:
            logger.error(f"GCS connection test failed: {e}")
            return False, f"Cannot reach Google Cloud Storage: {str(e)}"
