import io

import pytest

from conftest import OTHER_EMAIL, PASSWORD
from kudos_cafe.models import OrderStatus


def _request_cancellation(customer_client, order_id):
    resp = customer_client.post(
        f'/api/orders/{order_id}/cancel-request',
        json={
            'reason': 'Emergency situation',
            'refund_details': 'GCash 0917 111 2222',
        })
    assert resp.status_code == 201
    return resp.get_json()['message_id']


@pytest.mark.parametrize('path', [
    '/api/admin/analytics',
    '/api/admin/messages',
    '/api/admin/users',
    '/api/admin/inventory',
])
def test_admin_api_is_staff_only(customer_client, client, path):
    assert customer_client.get(path).status_code == 403
    assert client.get(path).status_code == 401


class TestCancellationReview:

    def test_request_shows_up_urgent_and_unread(
            self, admin_client, customer_client, create_order):
        order_id = create_order()
        message_id = _request_cancellation(customer_client, order_id)

        inbox = admin_client.get('/api/admin/messages').get_json()
        thread = inbox['threads'][0]
        assert thread['order_id'] == order_id
        assert thread['has_urgent'] is True
        assert thread['unread_count'] == 1
        assert thread['messages'][0]['id'] == message_id
        assert thread['messages'][0]['message_type'] == (
            'cancellation_request')
        assert inbox['unread_total'] == 1
        assert 'confirmation' in inbox['templates']

    def test_approve(self, admin_client, customer_client, create_order):
        order_id = create_order(minutes_ago=10)
        message_id = _request_cancellation(customer_client, order_id)

        resp = admin_client.post(f'/api/admin/messages/{message_id}/approve')
        assert resp.status_code == 200
        order = resp.get_json()['order']
        assert order['status'] == 'cancelled'
        assert order['payment_status'] == 'refunded'
        assert order['refund_amount'] == 350.0

        thread = customer_client.get(
            '/api/messages').get_json()['threads'][0]
        reply = thread['messages'][-1]
        assert reply['subject'] == 'Cancellation Approved'
        assert reply['parent_message_id'] == message_id
        assert thread['has_unread'] is True

        inbox = admin_client.get('/api/admin/messages').get_json()
        assert inbox['threads'][0]['unread_count'] == 0

        again = admin_client.post(f'/api/admin/messages/{message_id}/approve')
        assert again.status_code == 400

    def test_deny(self, admin_client, customer_client, create_order):
        order_id = create_order()
        message_id = _request_cancellation(customer_client, order_id)

        resp = admin_client.post(f'/api/admin/messages/{message_id}/deny')
        assert resp.status_code == 200

        order = customer_client.get(f'/api/orders/{order_id}').get_json()
        assert order['status'] == 'pending'
        thread = customer_client.get(
            '/api/messages').get_json()['threads'][0]
        assert thread['messages'][-1]['subject'] == (
            'Cancellation Request Denied')

    def test_unknown_message(self, admin_client):
        resp = admin_client.post('/api/admin/messages/404/approve')
        assert resp.status_code == 404


class TestMessaging:

    def test_send_template_and_reply(
            self, admin_client, customer_client, create_order):
        order_id = create_order()
        resp = admin_client.post(
            f'/api/admin/orders/{order_id}/messages',
            json={'template': 'delay', 'is_urgent': True})
        assert resp.status_code == 201

        thread = customer_client.get(
            '/api/messages').get_json()['threads'][0]
        assert thread['messages'][0]['subject'] == 'Order Delay Notice'
        assert thread['messages'][0]['is_urgent'] is True

        customer_client.post(
            f'/api/messages/{order_id}/reply', json={'message': 'Okay!'})
        inbox = admin_client.get('/api/admin/messages').get_json()
        customer_msg = inbox['threads'][0]['messages'][-1]

        resp = admin_client.post(
            f"/api/admin/messages/{customer_msg['id']}/reply",
            json={'message': 'Thanks for waiting.'})
        assert resp.status_code == 201
        thread = customer_client.get(
            '/api/messages').get_json()['threads'][0]
        assert thread['messages'][-1]['subject'] == 'Re: Customer Message'

    def test_send_validation(self, admin_client, create_order):
        order_id = create_order()
        for payload in (
            {'template': 'custom', 'message': ''},
            {'template': 'limerick'},
            {'template': 'confirmation', 'message_type': 'gossip'},
        ):
            resp = admin_client.post(
                f'/api/admin/orders/{order_id}/messages', json=payload)
            assert resp.status_code == 400, payload

    def test_inbox_sort_and_archive(self, admin_client, create_order):
        first = create_order()
        second = create_order()
        for order_id in (first, second):
            admin_client.post(
                f'/api/admin/orders/{order_id}/messages',
                json={'template': 'confirmation'})

        by_order = admin_client.get(
            '/api/admin/messages?sort=order&order=asc').get_json()
        assert [t['order_id'] for t in by_order['threads']] == [
            first, second]
        assert admin_client.get(
            '/api/admin/messages?sort=mood').status_code == 400

        admin_client.post(f'/api/admin/messages/{first}/archive')
        active = admin_client.get('/api/admin/messages').get_json()
        assert [t['order_id'] for t in active['threads']] == [second]
        archived = admin_client.get(
            '/api/admin/messages?archived=true').get_json()
        assert [t['order_id'] for t in archived['threads']] == [first]


class TestOrders:

    def test_status_moves_forward_only(self, admin_client, create_order):
        order_id = create_order()
        url = f'/api/admin/orders/{order_id}/status'

        assert admin_client.patch(
            url, json={'status': 'confirmed'}).status_code == 200
        assert admin_client.patch(
            url, json={'status': 'ready'}).status_code == 200
        assert admin_client.patch(
            url, json={'status': 'pending'}).status_code == 400
        assert admin_client.patch(
            url, json={'status': 'cancelled'}).status_code == 400
        assert admin_client.patch(
            url, json={'status': 'teleported'}).status_code == 400

        resp = admin_client.get('/api/admin/orders?status=ready')
        items = resp.get_json()['items']
        assert [o['id'] for o in items] == [order_id]

    def test_list_orders_all_customers(self, admin_client, create_order):
        create_order()
        create_order('other', status=OrderStatus.DELIVERED)
        data = admin_client.get('/api/admin/orders').get_json()
        assert data['total'] == 2


class TestMenu:

    def test_crud(self, admin_client, client):
        resp = admin_client.post('/api/admin/menu', json={
            'name': 'Iced Mocha',
            'category': 'Coffee',
            'price': '165.50',
            'dietary_tags': ['vegetarian', ' sweet '],
            'is_new': True,
        })
        assert resp.status_code == 201
        item = resp.get_json()['item']
        assert item['price'] == 165.5
        assert item['dietary_tags'] == ['vegetarian', 'sweet']

        public = client.get('/api/public/menu').get_json()
        assert [i['name'] for i in public['items']] == ['Iced Mocha']

        resp = admin_client.patch(
            f"/api/admin/menu/{item['id']}",
            json={'is_available': False})
        assert resp.get_json()['item']['is_available'] is False
        assert client.get('/api/public/menu').get_json()['items'] == []

        assert admin_client.delete(
            f"/api/admin/menu/{item['id']}").status_code == 200
        assert admin_client.get(
            '/api/admin/menu').get_json()['items'] == []

    @pytest.mark.parametrize('payload', [
        {'category': 'Coffee', 'price': 100},
        {'name': 'Mocha', 'price': 100},
        {'name': 'Mocha', 'category': 'Coffee', 'price': 'cheap'},
        {'name': 'Mocha', 'category': 'Coffee', 'price': -5},
        {'name': 'Mocha', 'category': 'Coffee', 'price': float('nan')},
        {'name': 'Mocha', 'category': 'Coffee', 'price': 'Infinity'},
    ])
    def test_create_validation(self, admin_client, payload):
        resp = admin_client.post('/api/admin/menu', json=payload)
        assert resp.status_code == 400

    def test_image_upload(self, admin_client, menu):
        url = f"/api/admin/menu/{menu['latte']}/image"
        resp = admin_client.post(
            url,
            data={'image': (io.BytesIO(b'\x89PNG fake'), 'latte.png')},
            content_type='multipart/form-data')
        assert resp.status_code == 200
        assert resp.get_json()['image_url'].startswith(
            '/static/uploads/menu/')

        resp = admin_client.post(
            url,
            data={'image': (io.BytesIO(b'MZ'), 'latte.exe')},
            content_type='multipart/form-data')
        assert resp.status_code == 400

        assert admin_client.post(url, data={}).status_code == 400

    def test_gallery_upload(self, admin_client, client):
        resp = admin_client.post(
            '/api/admin/gallery',
            data={
                'image': (io.BytesIO(b'GIF89a'), 'patio.gif'),
                'title': 'Our patio',
            },
            content_type='multipart/form-data')
        assert resp.status_code == 201

        items = client.get('/api/public/gallery').get_json()['items']
        assert [g['title'] for g in items] == ['Our patio']


class TestUsers:

    def test_cannot_change_own_account(self, admin_client, users):
        resp = admin_client.patch(
            f"/api/admin/users/{users['admin']}", json={'is_active': False})
        assert resp.status_code == 400

    def test_deactivated_user_cannot_log_in(self, app, admin_client, users):
        resp = admin_client.patch(
            f"/api/admin/users/{users['other']}", json={'is_active': False})
        assert resp.get_json()['is_active'] is False

        resp = app.test_client().post(
            '/api/auth/login',
            json={'email': OTHER_EMAIL, 'password': PASSWORD})
        assert resp.status_code == 401

    def test_deactivation_ends_open_sessions(
            self, admin_client, other_client, users):
        assert other_client.get('/api/orders').status_code == 200
        admin_client.patch(
            f"/api/admin/users/{users['other']}", json={'is_active': False})

        resp = other_client.get('/api/orders')
        assert resp.status_code == 401
        assert resp.get_json()['login_required'] is True

    def test_role_change_and_listing(self, admin_client, users):
        resp = admin_client.patch(
            f"/api/admin/users/{users['other']}", json={'role': 'admin'})
        assert resp.get_json()['role'] == 'ADMIN'
        assert admin_client.patch(
            f"/api/admin/users/{users['other']}",
            json={'role': 'owner'}).status_code == 400

        admins = admin_client.get('/api/admin/users?role=admin').get_json()
        assert admins['total'] == 2


def test_analytics(admin_client, customer_client, create_order):
    create_order(total='200.00', status=OrderStatus.DELIVERED)
    order_id = create_order(total='1000.00', minutes_ago=10)
    message_id = _request_cancellation(customer_client, order_id)

    stats = admin_client.get('/api/admin/analytics').get_json()
    assert stats['total_orders'] == 2
    assert stats['unread_messages'] == 1
    assert stats['revenue'] == 1200.0

    admin_client.post(f'/api/admin/messages/{message_id}/approve')
    stats = admin_client.get('/api/admin/analytics').get_json()
    assert stats['orders_by_status']['cancelled'] == 1
    assert stats['orders_by_status']['delivered'] == 1
    assert stats['revenue'] == 200.0
    assert stats['refunds'] == 350.0
    assert stats['unread_messages'] == 0
    assert stats['low_stock_items'] == 0


def test_dashboard_page_renders(admin_client):
    resp = admin_client.get('/admin')
    assert resp.status_code == 200
    assert b'Dashboard' in resp.data
