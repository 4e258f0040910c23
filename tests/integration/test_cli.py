"""
Integration tests for the Flask CLI commands.
"""

import json


def test_init_db(app):
    result = app.test_cli_runner().invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Database tables created' in result.output


def test_migrate_legacy(app, tmp_path):
    path = tmp_path / 'export.json'
    path.write_text(json.dumps({
        'tenants': {'org_cli': {'config': {'farmName': 'CLI Farm'}, 'subscription': {'plan': 'farm'}}}
    }), encoding='utf-8')
    runner = app.test_cli_runner()

    dry = runner.invoke(args=['migrate-legacy', str(path), '--dry-run'])
    assert dry.exit_code == 0
    assert 'DRY RUN' in dry.output

    result = runner.invoke(args=['migrate-legacy', str(path)])
    assert result.exit_code == 0
    assert 'Tenants processed: 1' in result.output
    assert 'Migration finished' in result.output


def test_migrate_legacy_reports_errors(app, tmp_path):
    path = tmp_path / 'export.json'
    path.write_text(json.dumps({'tenants': {'org_bad': {'subscription': {'plan': 'free'}}}}), encoding='utf-8')

    result = app.test_cli_runner().invoke(args=['migrate-legacy', str(path)])
    assert result.exit_code == 1
    assert 'org_bad' in result.output


def test_expire_trials(app):
    result = app.test_cli_runner().invoke(args=['expire-trials'])
    assert result.exit_code == 0
    assert 'Expired trials: 0' in result.output
