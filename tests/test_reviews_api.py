import pytest


def _post_review(customer_client, **fields):
    payload = {'rating': 5, 'comment': 'Best ube pandesal in town!'}
    payload.update(fields)
    return customer_client.post('/api/reviews', json=payload)


def test_new_reviews_wait_for_approval(customer_client, admin_client, client):
    resp = _post_review(customer_client)
    assert resp.status_code == 201
    review = resp.get_json()['review']
    assert review['is_approved'] is False

    assert client.get('/api/public/reviews').get_json()['items'] == []
    pending = admin_client.get(
        '/api/admin/reviews?filter=pending').get_json()['items']
    assert [r['id'] for r in pending] == [review['id']]

    resp = admin_client.post(f"/api/admin/reviews/{review['id']}/approve")
    assert resp.get_json()['review']['is_approved'] is True

    public = client.get('/api/public/reviews').get_json()['items']
    assert [r['user_name'] for r in public] == ['Ana Reyes']


def test_only_approved_reviews_can_be_featured(customer_client, admin_client):
    review_id = _post_review(customer_client).get_json()['review']['id']
    url = f'/api/admin/reviews/{review_id}'

    assert admin_client.post(f'{url}/feature').status_code == 400

    admin_client.post(f'{url}/approve')
    resp = admin_client.post(f'{url}/feature')
    assert resp.get_json()['review']['is_featured'] is True

    resp = admin_client.post(f'{url}/approve', json={'approved': False})
    review = resp.get_json()['review']
    assert review['is_approved'] is False
    assert review['is_featured'] is False


def test_featured_reviews_come_first(customer_client, admin_client, client):
    first = _post_review(customer_client, comment='Good').get_json()
    second = _post_review(customer_client, comment='Great').get_json()
    first_id = first['review']['id']
    second_id = second['review']['id']
    for review_id in (first_id, second_id):
        admin_client.post(f'/api/admin/reviews/{review_id}/approve')
    admin_client.post(f'/api/admin/reviews/{first_id}/feature')

    public = client.get('/api/public/reviews').get_json()['items']
    assert [r['id'] for r in public] == [first_id, second_id]

    featured = admin_client.get(
        '/api/admin/reviews?filter=featured').get_json()['items']
    assert [r['id'] for r in featured] == [first_id]
    assert admin_client.get(
        '/api/admin/reviews?filter=starred').status_code == 400


def test_staff_response_and_delete(customer_client, admin_client):
    review_id = _post_review(customer_client).get_json()['review']['id']
    url = f'/api/admin/reviews/{review_id}'

    assert admin_client.put(
        f'{url}/response', json={'response': ' '}).status_code == 400
    resp = admin_client.put(
        f'{url}/response', json={'response': 'Salamat, Ana!'})
    assert resp.get_json()['review']['admin_response'] == 'Salamat, Ana!'

    mine = customer_client.get('/api/reviews/mine').get_json()['items']
    assert mine[0]['admin_response'] == 'Salamat, Ana!'

    assert admin_client.delete(url).status_code == 200
    assert customer_client.get('/api/reviews/mine').get_json()['items'] == []


@pytest.mark.parametrize('fields', [
    {'rating': 0},
    {'rating': 6},
    {'rating': '5'},
    {'rating': True},
    {'comment': '   '},
])
def test_review_validation(customer_client, fields):
    assert _post_review(customer_client, **fields).status_code == 400


def test_one_review_per_order(customer_client, create_order):
    order_id = create_order()
    assert _post_review(
        customer_client, order_id=order_id).status_code == 201
    assert _post_review(
        customer_client, order_id=order_id).status_code == 400


def test_review_someone_elses_order(customer_client, create_order):
    order_id = create_order('other')
    assert _post_review(
        customer_client, order_id=order_id).status_code == 404


def test_review_for_a_menu_item(customer_client, admin_client, client, menu):
    resp = _post_review(customer_client, menu_item_id=menu['latte'], rating=4)
    review = resp.get_json()['review']
    assert review['menu_item_name'] == 'Spanish Latte'
    admin_client.post(f"/api/admin/reviews/{review['id']}/approve")

    items = client.get('/api/public/menu').get_json()['items']
    latte = next(i for i in items if i['id'] == menu['latte'])
    assert latte['rating'] == {'avg': 4.0, 'count': 1}

    assert _post_review(
        customer_client, menu_item_id=9999).status_code == 404
