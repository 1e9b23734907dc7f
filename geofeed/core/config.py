# geofeed/core/config.py

import os # 환경 변수를 읽기 위해 사용합니다.

class Config:
    """모든 환경 설정의 기반이 되는 공통 설정 클래스입니다."""
    # Firebase Storage 버킷 이름. 게시글/프로필 이미지 업로드에 사용됩니다.
    FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET')
    # 이메일 변경 전 비밀번호 재인증(Identity Toolkit REST API)에 사용하는 웹 API 키
    FIREBASE_WEB_API_KEY = os.getenv('FIREBASE_WEB_API_KEY')

    # 프로세스 재시작 후에도 유지되어야 하는 로컬 키-값 저장소(오버라이드 플래그, 세션 캐시) 파일 경로
    KV_STORE_PATH = os.getenv('KV_STORE_PATH', os.path.join(os.getcwd(), '.geofeed', 'kv_store.json'))
    # 이미지 피커/카메라가 남기는 임시 파일이 쌓이는 로컬 캐시 디렉터리
    CACHE_DIR = os.getenv('CACHE_DIR', os.path.join(os.getcwd(), '.geofeed', 'cache'))
    IMAGE_CACHE_MAX_ENTRIES = int(os.getenv('IMAGE_CACHE_MAX_ENTRIES', 200))

    # 게시글 비정규화 필드 전파: Firestore WriteBatch 한 번에 담을 수 있는 최대 쓰기 수는 500입니다.
    PROPAGATION_BATCH_SIZE = int(os.getenv('PROPAGATION_BATCH_SIZE', 500))
    PROPAGATION_MAX_WORKERS = int(os.getenv('PROPAGATION_MAX_WORKERS', 4))

    # 프로필 사진 제거 후 지연 검증: 첫 검사 + 재시도 1회
    VERIFY_DELAY_SECONDS = float(os.getenv('VERIFY_DELAY_SECONDS', 1.0))
    VERIFY_MAX_ATTEMPTS = int(os.getenv('VERIFY_MAX_ATTEMPTS', 2))

class DevelopmentConfig(Config):
    """개발 환경을 위한 설정 클래스입니다."""
    DEBUG = True
    # 개발용 Firebase 프로젝트의 서비스 계정 키 파일 경로
    FIREBASE_CREDENTIALS_PATH = os.getenv('DEV_FIREBASE_CREDENTIALS_PATH')

class TestingConfig(Config):
    """테스트 환경을 위한 설정 클래스입니다."""
    TESTING = True
    DEBUG = False
    FIREBASE_CREDENTIALS_PATH = os.getenv('TEST_FIREBASE_CREDENTIALS_PATH')
    # 테스트에서는 논리 시계를 주입하므로 지연 시간을 0으로 둡니다.
    VERIFY_DELAY_SECONDS = 0.0

class ProductionConfig(Config):
    """운영 환경을 위한 설정 클래스입니다."""
    DEBUG = False
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')

# config_by_name: FLASK_ENV 값에 따라 create_app에서 적절한 설정 클래스를 선택하는 데 사용됩니다.
config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig,
    production=ProductionConfig
)
