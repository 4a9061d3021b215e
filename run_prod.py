#!/usr/bin/env python3
"""
Production runner for FairMeet
- Serves the Flask API (fairmeet.app) behind ProxyFix
- Loads .env for provider credentials and other settings

Usage:
  python3 run_prod.py

Environment:
  PORT=8000 (default)        # Port to bind
  HOST=0.0.0.0 (default)     # Host interface
  MAPS_PROVIDER=google       # google | mapbox
  GOOGLE_MAPS_API_KEY=...    # Required when MAPS_PROVIDER=google
  MAPBOX_TOKEN=...           # Required when MAPS_PROVIDER=mapbox
  WSGI_THREADS=8             # waitress worker threads
"""

import os
import ssl
from pathlib import Path

from dotenv import load_dotenv
from werkzeug.middleware.proxy_fix import ProxyFix

PROJECT_ROOT = Path(__file__).resolve().parent

# Load env from .env if present, before the app reads its settings
load_dotenv(dotenv_path=PROJECT_ROOT / '.env')

from fairmeet.app import app as api_app, maps_service  # noqa: E402

application = api_app

# Respect reverse proxy headers (X-Forwarded-*) when behind a proxy/HTTPS terminator
if os.getenv('TRUST_PROXY_HEADERS', '1') not in ('0', 'false', 'False', 'no', 'off'):
    # Trust a single proxy hop by default; tune via env
    x_for = int(os.getenv('PROXY_FIX_X_FOR', '1'))
    x_proto = int(os.getenv('PROXY_FIX_X_PROTO', '1'))
    x_host = int(os.getenv('PROXY_FIX_X_HOST', '1'))
    x_port = int(os.getenv('PROXY_FIX_X_PORT', '1'))
    x_prefix = int(os.getenv('PROXY_FIX_X_PREFIX', '1'))
    application = ProxyFix(application, x_for=x_for, x_proto=x_proto, x_host=x_host, x_port=x_port, x_prefix=x_prefix)


def main():
    host = os.getenv('HOST', '0.0.0.0')
    try:
        port = int(os.getenv('PORT', '8000'))
    except ValueError:
        port = 8000

    if maps_service is None:
        print("\n" + "="*60)
        print("Warning: no maps provider credential is configured.")
        print("Session endpoints work, ranking and geocoding will answer 500.")
        print("Set GOOGLE_MAPS_API_KEY or MAPBOX_TOKEN in your environment or .env file.")
        print("="*60 + "\n")

    ssl_cert = os.getenv('SSL_CERTFILE') or os.getenv('SSL_CERT')
    ssl_key = os.getenv('SSL_KEYFILE') or os.getenv('SSL_KEY')

    if ssl_cert and ssl_key:
        print(f"\n🔐 Starting FairMeet (prod) on https://{host}:{port}")
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(certfile=ssl_cert, keyfile=ssl_key)

        # Use Werkzeug's run_simple to serve HTTPS directly
        from werkzeug.serving import run_simple
        run_simple(hostname=host, port=port, application=application, ssl_context=context, threaded=True)
    else:
        print(f"\n🚀 Starting FairMeet (prod) on http://{host}:{port}")
        from waitress import serve
        print("Using waitress WSGI server")
        serve(application, host=host, port=port, threads=int(os.getenv('WSGI_THREADS', '8')))


if __name__ == '__main__':
    main()
