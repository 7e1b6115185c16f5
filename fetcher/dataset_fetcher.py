"""
Subject data fetcher.
Downloads the delimited subject file once from a static URL into data/.
"""

import requests
import hashlib
import json
import os
import time
from datetime import datetime
from tqdm import tqdm
from typing import Dict, Optional


class DatasetFetcher:
    """Static file downloader with retry and a fetch report"""

    CHUNK_SIZE = 64 * 1024

    def __init__(self, timeout: float = 30.0):
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'oscars-immortal-time/0.1 (+python-requests)',
            'Accept': 'text/csv,text/plain,text/tab-separated-values,*/*;q=0.8',
        })
        self.timeout = timeout
        self.report: Dict = {}

    def _download(self, url: str, dest: str) -> int:
        """Stream url into dest via a temporary file; returns bytes written"""
        tmp = dest + '.part'
        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            total = int(response.headers.get('Content-Length', 0))
            written = 0
            with open(tmp, 'wb') as f, tqdm(total=total or None, unit='B', unit_scale=True,
                                            desc=f"  {os.path.basename(dest)}") as pbar:
                for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    written += len(chunk)
                    pbar.update(len(chunk))
        os.replace(tmp, dest)
        return written

    def fetch(self, url: str, dest: str, retry: int = 3,
              refresh: bool = False) -> Optional[str]:
        """Download url to dest unless it already exists; None after all retries fail"""
        if os.path.exists(dest) and not refresh:
            size = os.path.getsize(dest)
            print(f"  {dest} already exists ({size / 1e3:.1f} kB), skipping download")
            self.report = self._describe(url, dest, downloaded=False)
            return dest

        os.makedirs(os.path.dirname(dest) or '.', exist_ok=True)
        print(f"  Downloading {url} ...")

        for attempt in range(retry):
            try:
                self._download(url, dest)
                self.report = self._describe(url, dest, downloaded=True)
                print(f"  Saved {dest} ({self.report['bytes'] / 1e3:.1f} kB, "
                      f"{self.report['lines']} lines)")
                return dest
            except requests.exceptions.RequestException as e:
                print(f"Request failed (attempt {attempt + 1}/{retry}): {url} - {e}")
                if attempt + 1 < retry:
                    time.sleep(2 ** attempt)

        if os.path.exists(dest + '.part'):
            os.remove(dest + '.part')
        return None

    def _describe(self, url: str, dest: str, downloaded: bool) -> Dict:
        digest = hashlib.sha256()
        lines = 0
        with open(dest, 'rb') as f:
            for chunk in iter(lambda: f.read(self.CHUNK_SIZE), b''):
                digest.update(chunk)
                lines += chunk.count(b'\n')
        return {
            'url': url,
            'path': dest,
            'downloaded': downloaded,
            'fetched_at': datetime.now().isoformat(),
            'bytes': os.path.getsize(dest),
            'lines': lines,
            'sha256': digest.hexdigest(),
        }

    def save_report(self, filepath: str = 'data/fetch_report.json'):
        """Save the last fetch description to JSON"""
        os.makedirs(os.path.dirname(filepath) or '.', exist_ok=True)

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.report, f, ensure_ascii=False, indent=2)

        print(f"Fetch report saved: {filepath}")
