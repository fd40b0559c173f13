from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'vault',
    'facilitator',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': env.str('DATABASE_ENGINE', 'django.db.backends.postgresql_psycopg2'),
        'NAME': env.str(
            'PGSQL_DATABASE_FACILITATOR',
            env.str('PGSQL_DATABASE', 'payperie_facilitator'),
        ),
        'USER': env.str('PGSQL_USER', 'postgres'),
        'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
        'HOST': env.str('PGSQL_HOST', 'localhost'),
        'PORT': env.int('PGSQL_PORT', 5432),
    }
}

TIME_ZONE = 'UTC'

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

# Chain access
X402_NETWORK = env.str('X402_NETWORK', 'avalanche-fuji')
X402_CHAIN_ID = env.int('X402_CHAIN_ID', 0)
X402_CHAIN_BACKEND = env.str('X402_CHAIN_BACKEND', 'evm')
X402_RPC_URL = env.str('X402_RPC_URL', 'https://api.avax-test.network/ext/bc/C/rpc')
X402_SIGNER_PRIVATE_KEY = env.str('X402_SIGNER_PRIVATE_KEY', '')
X402_SIGNER_ADDRESS = env.str('X402_SIGNER_ADDRESS', '')
X402_GAS_LIMIT = env.int('X402_GAS_LIMIT', 250000)
X402_TX_TIMEOUT_SECONDS = env.int('X402_TX_TIMEOUT_SECONDS', 120)
X402_MAX_FEE_PER_GAS_WEI = env.int('X402_MAX_FEE_PER_GAS_WEI', 0)
X402_MAX_PRIORITY_FEE_PER_GAS_WEI = env.int(
    'X402_MAX_PRIORITY_FEE_PER_GAS_WEI', 0)

# Settlement asset and its EIP-712 domain
# Empty means the known USDC deployment for X402_NETWORK
X402_USDC_CONTRACT = env.str('X402_USDC_CONTRACT', '')
X402_TOKEN_NAME = env.str('X402_TOKEN_NAME', 'USD Coin')
X402_TOKEN_VERSION = env.str('X402_TOKEN_VERSION', '2')

# Optional downstream vault; empty means the collection transfer is final
X402_VAULT_ADDRESS = env.str('X402_VAULT_ADDRESS', '')

# Spending policy
X402_POLICY_STORE = env.str('X402_POLICY_STORE', 'database')
X402_DEFAULT_MAX_TRANSACTION_AMOUNT = env.int(
    'X402_DEFAULT_MAX_TRANSACTION_AMOUNT', 100_000_000)
X402_DEFAULT_DAILY_SPENDING_LIMIT = env.int(
    'X402_DEFAULT_DAILY_SPENDING_LIMIT', 500_000_000)
# Authorizes every merchant for users with no allow-list entry. Keep it
# explicit: production deployments should set this to false.
X402_DEFAULT_AUTO_PAY = env.bool('X402_DEFAULT_AUTO_PAY', True)

# In-process vault ledger (X402_CHAIN_BACKEND=ledger)
VAULT_ADDRESS = env.str(
    'VAULT_ADDRESS', '0x000000000000000000000000000000000000a117')
VAULT_ADMIN_ADDRESS = env.str('VAULT_ADMIN_ADDRESS', '')
VAULT_TREASURY_ADDRESS = env.str('VAULT_TREASURY_ADDRESS', '')
VAULT_PROTOCOL_FEE_BPS = env.int('VAULT_PROTOCOL_FEE_BPS', 100)
