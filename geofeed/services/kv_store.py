# geofeed/services/kv_store.py
import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, Iterable, List, Optional

from flask import Flask


class JsonFileKeyValueStore:
    """
    프로세스 재시작 후에도 유지되어야 하는 작은 키-값 데이터를 JSON 파일 하나에 저장하는 서비스입니다.
    (세션 사용자 캐시 'userData', 오버라이드 플래그 'auth_overrides', 이미지 캐시 메타데이터 등)

    값은 JSON으로 직렬화 가능한 객체여야 합니다.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()

    def init_app(self, app: Flask):
        """Flask 앱 초기화 과정에서 호출되어 저장 파일 경로를 설정합니다."""
        self.path = app.config.get('KV_STORE_PATH')
        if not self.path:
            raise ValueError("KV_STORE_PATH 설정이 .env 또는 설정 파일에 필요합니다.")
        logging.info(f"KeyValueStore: 로컬 키-값 저장소 경로 설정 완료 ({self.path})")

    def get(self, key: str) -> Any:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def remove_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            data = self._read()
            removed = False
            for key in keys:
                if key in data:
                    del data[key]
                    removed = True
            if removed:
                self._write(data)

    def list_keys(self) -> List[str]:
        with self._lock:
            return list(self._read().keys())

    def _read(self) -> Dict[str, Any]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            # 손상된 파일은 빈 저장소로 취급합니다. 다음 쓰기에서 덮어씁니다.
            logging.error(f"키-값 저장소 읽기 실패 (path: {self.path}): {e}")
            return {}

    def _write(self, data: Dict[str, Any]) -> None:
        if not self.path:
            raise RuntimeError("KeyValueStore가 초기화되지 않았습니다. init_app을 먼저 호출해주세요.")
        directory = os.path.dirname(self.path) or '.'
        os.makedirs(directory, exist_ok=True)
        # 임시 파일에 쓴 뒤 교체하여 쓰기 도중 종료되어도 이전 내용이 보존되도록 합니다.
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.kv_', suffix='.json')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
