import json
import logging
import os

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.http import MediaFileUpload

SCOPES = ["https://www.googleapis.com/auth/drive.file"]


class DriveUploader:
    def __init__(self, folder_id, credentials_path="cred.json"):
        """
        Upload Jenkins backup archives to a Google Drive folder
        :param folder_id: Google Drive folder ID for uploads
        :param credentials_path: Service account credentials JSON file
        """
        self.logger = logging.getLogger(__name__)
        self.folder_id = folder_id
        self.credentials_path = credentials_path
        self._service = None

    @property
    def service(self):
        if self._service is None:
            with open(self.credentials_path, "r") as f:
                credentials_dict = json.load(f)

            credentials = service_account.Credentials.from_service_account_info(
                credentials_dict,
                scopes=SCOPES
            )
            self._service = build("drive", "v3", credentials=credentials)
        return self._service

    def upload(self, file_path):
        """
        Upload a backup archive to the Drive folder
        :param file_path: Path to the backup file
        :return: Uploaded file ID
        """
        try:
            self.logger.info(f"Starting Google Drive upload for {file_path}")

            file_metadata = {
                "name": os.path.basename(file_path),
                "parents": [self.folder_id] if self.folder_id else []
            }
            media = MediaFileUpload(
                str(file_path),
                resumable=True,
                chunksize=1024*1024  # 1 MB chunks
            )
            uploaded_file = self.service.files().create(
                body=file_metadata,
                media_body=media,
                fields="id,name,createdTime"
            ).execute()

            self.logger.info(f"File uploaded successfully. File ID: {uploaded_file.get('id')}, Name: {uploaded_file.get('name')}")
            return uploaded_file.get("id")

        except Exception as e:
            self.logger.error(f"Google Drive upload failed: {e}")
            raise

    def list_files(self):
        """
        All non-trashed files in the Drive folder, across result pages
        """
        query = f"'{self.folder_id}' in parents and trashed=false"
        files = []
        page_token = None
        while True:
            results = self.service.files().list(
                q=query,
                fields="nextPageToken, files(id, name, createdTime)",
                orderBy="createdTime desc",
                pageSize=1000,
                pageToken=page_token
            ).execute()
            files.extend(results.get("files", []))
            page_token = results.get("nextPageToken")
            if not page_token:
                return files

    def clean_folder(self, keep=1, suffix=".tar.zst"):
        """
        Delete all but the newest `keep` backup archives from the Drive folder
        :param keep: Number of recent archives to keep
        :param suffix: Only files ending with this suffix belong to the backup set
        :return: Names of the deleted files
        """
        self.logger.info(f"Cleaning up old backups in Google Drive folder: {self.folder_id}")

        files = [file for file in self.list_files() if file["name"].endswith(suffix)]

        if not files:
            self.logger.info("No backup files found in Google Drive.")
            return []

        files.sort(key=lambda x: x["createdTime"], reverse=True)
        self.logger.info(f"Found {len(files)} backups in Google Drive, keeping {keep}")

        deleted = []
        for file in files[keep:]:
            try:
                self.service.files().delete(fileId=file["id"]).execute()
                deleted.append(file["name"])
                self.logger.info(f"Deleted old backup from Drive: {file['name']} (ID: {file['id']})")
            except Exception as e:
                self.logger.warning(f"Failed to delete {file['name']} from Drive: {e}")

        return deleted
