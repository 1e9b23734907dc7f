# geofeed/__init__.py

# =====================================================================================
# 1. 환경 변수 로드 (가장 먼저 실행)
# =====================================================================================
from dotenv import load_dotenv
load_dotenv()

# =====================================================================================
# 2. 모듈 임포트 (Module Imports)
# =====================================================================================
import os
import time
import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
import firebase_admin
from firebase_admin import credentials

# - 설정 및 공용 예외
from geofeed.core.config import config_by_name
from geofeed.core.errors import FeedError
from geofeed.core.session import SessionContext

# - API 블루프린트
from geofeed.api.auth.routes import auth_bp
from geofeed.api.uploads.routes import uploads_bp
from geofeed.api.users.routes import users_bp
from geofeed.api.posts.routes import posts_bp

# - 서비스 모듈
from geofeed.services.kv_store import JsonFileKeyValueStore
from geofeed.services.override_store import OverrideStore
from geofeed.services.cache_service import CacheService, ImageCache
from geofeed.services.document_store import FirestoreDocumentStore
from geofeed.services.identity_provider import IdentityProvider
from geofeed.services.storage_service import StorageService
from geofeed.api.auth.services import IdentityCoordinator
from geofeed.api.posts.services import PostService
from geofeed.api.posts.like_service import LikeService
from geofeed.api.users.propagation import PostPropagator
from geofeed.api.users.services import IdentitySyncService


def _init_firebase(app: Flask) -> None:
    if firebase_admin._apps:
        return
    cred_path = app.config['FIREBASE_CREDENTIALS_PATH']
    if not cred_path or not os.path.exists(cred_path):
        raise FileNotFoundError(f"Firebase 인증 파일을 찾을 수 없습니다: {cred_path}")
    cred = credentials.Certificate(cred_path)
    firebase_admin.initialize_app(cred, {
        'storageBucket': app.config['FIREBASE_STORAGE_BUCKET']
    })


def create_app(config_name: Optional[str] = None, adapters: Optional[Dict[str, Any]] = None):
    """
    Flask 애플리케이션 팩토리 함수.

    :param config_name: 'development' / 'testing' / 'production'. 없으면 FLASK_ENV를 따릅니다.
    :param adapters: 외부 저장소 어댑터 교체용 딕셔너리.
        'documents', 'identity', 'kv_store', 'storage', 'sleep' 키를 지원하며
        documents/identity가 모두 주어지면 Firebase 초기화를 건너뜁니다.
    """
    # =====================================================================================
    # 3. Flask 앱 생성 및 기본 설정
    # =====================================================================================
    config_name = config_name or os.getenv('FLASK_ENV', 'development')
    adapters = adapters or {}

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.json.ensure_ascii = False

    # =====================================================================================
    # 4. 외부 서비스 초기화
    # =====================================================================================
    if 'documents' not in adapters or 'identity' not in adapters:
        _init_firebase(app)

    # =====================================================================================
    # 5. 서비스 인스턴스 생성 및 'app.services'에 저장 (의존성 주입)
    # =====================================================================================
    app.services = {}

    # 5-1. 다른 서비스의 기반이 되는 공용/핵심 서비스 먼저 생성
    app.services['session'] = SessionContext()

    kv_store = adapters.get('kv_store')
    if kv_store is None:
        kv_store = JsonFileKeyValueStore()
        kv_store.init_app(app)
    app.services['kv_store'] = kv_store
    app.services['overrides'] = OverrideStore(kv_store)

    image_cache = ImageCache(app.config['IMAGE_CACHE_MAX_ENTRIES'])
    cache_instance = CacheService(kv_store, image_cache=image_cache)
    cache_instance.init_app(app)
    app.services['cache'] = cache_instance

    document_store = adapters.get('documents')
    if document_store is None:
        document_store = FirestoreDocumentStore()
        document_store.init_app(app)
    app.services['documents'] = document_store

    identity_provider = adapters.get('identity')
    if identity_provider is None:
        identity_provider = IdentityProvider()
        identity_provider.init_app(app)
    app.services['identity'] = identity_provider

    storage_instance = adapters.get('storage')
    if storage_instance is None:
        try:
            storage_instance = StorageService(image_cache=image_cache)
            storage_instance.init_app(app)
            logging.info("Storage service initialized successfully")
        except Exception as e:
            logging.error(f"Failed to initialize storage service: {e}")
            raise
    app.services['storage'] = storage_instance

    # 5-2. 다른 서비스를 주입받아야 하는 도메인 서비스 생성
    session = app.services['session']
    app.services['posts'] = PostService(document_store, session, storage_service=storage_instance)
    app.services['likes'] = LikeService(document_store, session)
    app.services['propagator'] = PostPropagator(
        document_store,
        batch_size=app.config['PROPAGATION_BATCH_SIZE'],
        max_workers=app.config['PROPAGATION_MAX_WORKERS'],
    )
    app.services['identity_sync'] = IdentitySyncService(
        identity_provider=identity_provider,
        document_store=document_store,
        override_store=app.services['overrides'],
        cache_service=cache_instance,
        propagator=app.services['propagator'],
        session=session,
        post_service=app.services['posts'],
        storage_service=storage_instance,
        sleep=adapters.get('sleep', time.sleep),
        verify_delay_seconds=app.config['VERIFY_DELAY_SECONDS'],
        verify_max_attempts=app.config['VERIFY_MAX_ATTEMPTS'],
    )

    # - 신원 변경 이벤트 소비자 (세션 시작/갱신/로그아웃)
    coordinator = IdentityCoordinator(identity_provider, session, app.services['identity_sync'], kv_store)
    coordinator.start()
    app.services['coordinator'] = coordinator

    # =====================================================================================
    # 6. 블루프린트 등록
    # =====================================================================================
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(uploads_bp, url_prefix='/api/uploads')
    app.register_blueprint(users_bp, url_prefix='/api/users')
    app.register_blueprint(posts_bp, url_prefix='/api/posts')

    # =====================================================================================
    # 7. 전역 에러 핸들러 설정
    # =====================================================================================
    @app.errorhandler(FeedError)
    def handle_feed_error(err):
        if err.status_code >= 500:
            logging.error(f"요청 처리 실패: {err}", exc_info=True)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        response = {"error_code": "VALIDATION_ERROR", "details": err.messages}
        return jsonify(response), 400

    @app.errorhandler(Exception)
    def handle_generic_exception(err):
        if isinstance(err, HTTPException):
            return err
        # 다른 핸들러에서 처리되지 않은 모든 예외를 여기서 처리
        logging.error(f"An unhandled exception occurred: {err}", exc_info=True)
        response = {"error_code": "INTERNAL_SERVER_ERROR", "message": "서버 내부에서 예상치 못한 오류가 발생했습니다."}
        return jsonify(response), 500

    # =====================================================================================
    # 8. 로깅 및 앱 반환
    # =====================================================================================
    if not app.debug:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')

    logging.info(f"Flask app created for '{config_name}' environment.")

    return app
