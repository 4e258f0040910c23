"""
Integration tests for the HTTP surface.
"""

import pytest

SLIP_URL = 'https://res.cloudinary.com/demo/payment-slips/slip-002.jpg'


@pytest.fixture
def applicant(identity_headers):
    return identity_headers(user_id='applicant_1')


def _approved_tenant(client, applicant, admin_headers, application_payload, plan='professional'):
    """Run an application through the API and return (tenant payload, application id)."""
    response = client.post('/api/applications', json=application_payload(requestedPlan=plan), headers=applicant)
    application_id = response.get_json()['data']['id']
    if plan != 'free':
        client.post(f'/api/applications/{application_id}/payment-slip',
                    json={'paymentSlipUrl': SLIP_URL}, headers=applicant)
    client.post(f'/api/admin/applications/{application_id}/start-review', headers=admin_headers)
    response = client.post(f'/api/admin/applications/{application_id}/review',
                           json={'action': 'approve'}, headers=admin_headers)
    assert response.status_code == 200
    return response.get_json()['data']['tenant'], application_id


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'database': 'connected', 'cache': 'connected'}

    def test_health_with_cache_down(self, client, fake_redis):
        fake_redis.fail = True
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['cache'] == 'degraded'

    def test_metrics(self, client, identity_headers):
        client.get('/api/tenant/config', headers=identity_headers(tenant_id='org_metrics'))
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'endpoint="tenants.config_detail"' in response.data
        assert b'tenant_scoped="yes"' in response.data
        assert b'endpoint="metrics.metrics"' not in response.data
        assert b'tenant_cache_requests_total' in response.data

    def test_unknown_route_is_json(self, client):
        response = client.get('/api/nowhere')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'


class TestApplicationsApi:

    def test_requires_identity(self, client, application_payload):
        response = client.post('/api/applications', json=application_payload())
        assert response.status_code == 403
        assert response.get_json()['error'] == 'forbidden'

    def test_submit_paid_plan(self, client, applicant, application_payload):
        response = client.post('/api/applications', json=application_payload(), headers=applicant)
        assert response.status_code == 201
        body = response.get_json()
        assert body['status'] == 'success'
        assert body['data']['status'] == 'pending'
        assert 'payment slip' in body['message']

    def test_validation_error_shape(self, client, applicant, application_payload):
        response = client.post('/api/applications', json=application_payload(requestedPlan=None), headers=applicant)
        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'validation_error'
        assert body['field'] == 'requestedPlan'

    def test_invalid_transition_is_409(self, client, applicant, application_payload):
        response = client.post('/api/applications', json=application_payload(requestedPlan='free'), headers=applicant)
        application_id = response.get_json()['data']['id']

        response = client.post(f'/api/applications/{application_id}/payment-slip',
                               json={'paymentSlipUrl': SLIP_URL}, headers=applicant)
        assert response.status_code == 409
        assert response.get_json()['error'] == 'invalid_transition'

    def test_list_and_detail_are_scoped_to_applicant(self, client, applicant, identity_headers, application_payload):
        response = client.post('/api/applications', json=application_payload(), headers=applicant)
        application_id = response.get_json()['data']['id']

        assert [a['id'] for a in client.get('/api/applications', headers=applicant).get_json()['data']] == [application_id]
        other = identity_headers(user_id='applicant_2')
        assert client.get('/api/applications', headers=other).get_json()['data'] == []
        assert client.get(f'/api/applications/{application_id}', headers=other).status_code == 404
        assert client.get(f'/api/applications/{application_id}', headers=applicant).status_code == 200


class TestAdminApi:

    def test_requires_super_admin(self, client, applicant):
        response = client.get('/api/admin/applications', headers=applicant)
        assert response.status_code == 403

    def test_approve_flow(self, client, applicant, admin_headers, application_payload):
        tenant, application_id = _approved_tenant(client, applicant, admin_headers, application_payload)
        assert tenant['farmId'].startswith('MTD-')
        assert tenant['subscription']['plan'] == 'professional'

        listed = client.get('/api/admin/applications?status=approved', headers=admin_headers).get_json()['data']
        assert [a['id'] for a in listed] == [application_id]

    def test_reject_needs_reason(self, client, applicant, admin_headers, application_payload):
        response = client.post('/api/applications', json=application_payload(), headers=applicant)
        application_id = response.get_json()['data']['id']
        url = f'/api/admin/applications/{application_id}/review'

        assert client.post(url, json={'action': 'reject'}, headers=admin_headers).status_code == 400
        response = client.post(url, json={'action': 'reject', 'rejectionReason': 'Blurry slip'}, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'rejected'

        assert client.post(url, json={'action': 'archive'}, headers=admin_headers).status_code == 400

    def test_subscription_admin(self, client, applicant, admin_headers, application_payload):
        tenant, _ = _approved_tenant(client, applicant, admin_headers, application_payload)
        base = f"/api/admin/tenants/{tenant['tenantId']}/subscription"

        response = client.post(f'{base}/events', json={'event': 'renewal_succeeded', 'gateway': 'easypaisa'},
                               headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'active'

        response = client.post(f'{base}/plan', json={'plan': 'enterprise'}, headers=admin_headers)
        assert response.get_json()['data']['plan'] == 'enterprise'

        response = client.post(f'{base}/events', json={'event': 'trial_elapsed'}, headers=admin_headers)
        assert response.status_code == 409

    def test_audit_log_endpoint(self, client, applicant, admin_headers, application_payload):
        tenant, _ = _approved_tenant(client, applicant, admin_headers, application_payload)
        url = f"/api/admin/tenants/{tenant['tenantId']}/audit-logs"

        logs = client.get(f'{url}?action=tenant_provisioned', headers=admin_headers).get_json()['data']
        assert len(logs) == 1
        assert logs[0]['details']['farmId'] == tenant['farmId']

        assert client.get(f'{url}?action=bogus', headers=admin_headers).status_code == 400
        assert client.get('/api/admin/tenants/org_missing/audit-logs', headers=admin_headers).status_code == 404

    def test_migration_endpoint(self, client, admin_headers):
        export = {'tenants': {'org_legacy': {'config': {'farmName': 'Legacy Farm', 'subdomain': 'legacy'}}}}

        response = client.post('/api/admin/migrations', json={'export': export, 'dryRun': True}, headers=admin_headers)
        assert response.get_json()['data']['counts']['tenants'] == {'created': 1, 'updated': 0}

        response = client.post('/api/admin/migrations', json={'export': export}, headers=admin_headers)
        assert response.get_json()['data']['dryRun'] is False

        response = client.post('/api/admin/migrations', json={'export': export}, headers=admin_headers)
        assert response.get_json()['data']['counts']['tenants'] == {'created': 0, 'updated': 1}

    def test_migration_needs_a_source(self, client, admin_headers):
        response = client.post('/api/admin/migrations', json={}, headers=admin_headers)
        assert response.status_code == 400


class TestTenantApi:

    def test_requires_tenant(self, client, applicant):
        response = client.get('/api/tenant/config', headers=applicant)
        assert response.status_code == 403

    def test_config_read_and_update(self, client, applicant, admin_headers, identity_headers, application_payload):
        tenant, _ = _approved_tenant(client, applicant, admin_headers, application_payload)
        member = identity_headers(user_id='applicant_1', tenant_id=tenant['tenantId'], org_role='org:member')
        owner = identity_headers(user_id='applicant_1', tenant_id=tenant['tenantId'], org_role='org:admin')

        assert client.get('/api/tenant/config', headers=member).get_json()['data']['slug'] == tenant['slug']

        assert client.patch('/api/tenant/config', json={'language': 'ur'}, headers=member).status_code == 403

        response = client.patch('/api/tenant/config', json={'language': 'ur'}, headers=owner)
        assert response.status_code == 200
        assert client.get('/api/tenant/config', headers=member).get_json()['data']['language'] == 'ur'

    def test_limits(self, client, applicant, admin_headers, identity_headers, application_payload):
        tenant, _ = _approved_tenant(client, applicant, admin_headers, application_payload)
        member = identity_headers(user_id='applicant_1', tenant_id=tenant['tenantId'])

        data = client.get('/api/tenant/limits?animals=96&users=5', headers=member).get_json()['data']
        assert data['maxAnimals'] == 100
        assert data['remainingAnimals'] == 4
        assert data['canAddAnimal'] is True
        assert data['remainingUsers'] == 0
        assert data['canAddUser'] is False

        subscription = client.get('/api/tenant/subscription', headers=member).get_json()['data']
        assert subscription['status'] == 'trial'

    def test_custom_fields(self, client, applicant, admin_headers, identity_headers, application_payload):
        tenant, _ = _approved_tenant(client, applicant, admin_headers, application_payload, plan='free')
        owner = identity_headers(user_id='applicant_1', tenant_id=tenant['tenantId'], org_role='owner')

        response = client.put('/api/tenant/custom-fields',
                              json={'fields': [{'name': 'Ear tag', 'type': 'text', 'required': True}]},
                              headers=owner)
        assert response.status_code == 200
        fields = client.get('/api/tenant/custom-fields', headers=owner).get_json()['data']['fields']
        assert [f['name'] for f in fields] == ['Ear tag']

        assert client.put('/api/tenant/custom-fields', json={}, headers=owner).status_code == 400

    def test_delete(self, client, applicant, admin_headers, identity_headers, application_payload):
        tenant, _ = _approved_tenant(client, applicant, admin_headers, application_payload, plan='free')
        owner = identity_headers(user_id='applicant_1', tenant_id=tenant['tenantId'], org_role='owner')

        assert client.delete('/api/tenant', headers=owner).status_code == 200
        assert client.get('/api/tenant/config', headers=owner).status_code == 404
