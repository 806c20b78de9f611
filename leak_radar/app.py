"""
Flask application exposing the revenue scan endpoints.

The signed-in organization is read from ``session['organization_id']``; the
login flow that sets it lives outside this service.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, session

from .billing_client import StripeClientFactory, configure_stripe
from .config import Settings
from .credentials import CredentialCipher
from .db import create_db_engine, init_db, make_session_factory
from .routes import create_revenue_blueprint
from .scan import ScanOrchestrator
from .store import RevenueStore

logger = logging.getLogger("leak_radar.app")

SESSION_ORGANIZATION_KEY = "organization_id"


def current_organization_id() -> Optional[str]:
    return session.get(SESSION_ORGANIZATION_KEY)


def create_app(settings: Optional[Settings] = None, *, store: Optional[RevenueStore] = None) -> Flask:
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.getenv('FLASK_SECRET_KEY') or os.getenv('SECRET_KEY') or secrets.token_hex(32)
    app.config['DEBUG'] = settings.debug

    if store is None:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        store = RevenueStore(make_session_factory(engine))

    cipher = CredentialCipher.from_settings(settings)
    configure_stripe(settings.stripe_max_retries)
    orchestrator = ScanOrchestrator(
        store,
        StripeClientFactory(store.get_billing_link, cipher, api_version=settings.stripe_api_version),
        max_pages=settings.scan_max_pages,
        page_size=settings.scan_page_size,
        drop_threshold_pct=settings.mrr_drop_threshold_pct,
    )

    revenue_bp = create_revenue_blueprint(
        store=store,
        scan_runner=orchestrator.run_daily_scan,
        organization_provider=current_organization_id,
        cron_secret=settings.cron_secret,
        cipher=cipher,
        logger=logger,
        stripe_api_version=settings.stripe_api_version,
    )
    app.register_blueprint(revenue_bp, url_prefix='/api')

    if not settings.cron_secret:
        logger.warning('CRON_SECRET is not set; the daily revenue check endpoint will reject every request')

    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

    app.extensions['leak_radar.store'] = store
    return app
