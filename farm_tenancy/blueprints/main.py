"""Main blueprint with health check endpoints."""
from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from farm_tenancy.database import get_session
from farm_tenancy.services.cache_service import get_cache

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates the database connection.

    Returns:
        200: Healthy (DB connected; cache may be degraded)
        503: Unhealthy (DB error)
    """
    cache_status = 'connected' if get_cache().is_available() else 'degraded'
    try:
        session = get_session()
        row = session.execute(text("SELECT 1 as health_check")).fetchone()
        if row and row[0] == 1:
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'cache': cache_status,
            }), 200
        return jsonify({
            'status': 'unhealthy',
            'database': 'error',
            'cache': cache_status,
            'message': 'Unexpected query result'
        }), 503

    except SQLAlchemyError as e:
        session.rollback()
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'cache': cache_status,
            'error': str(e),
            'message': 'Failed to connect to database'
        }), 503
