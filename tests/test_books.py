"""
Tests for the catalog endpoints and the Available/Allocated status toggles.
"""
import pytest
from libtrack.models import Book, Reservation


@pytest.mark.api
class TestCatalog:

    def test_create_book_as_admin(self, client, db, admin, admin_headers):
        response = client.post('/api/library/books', json={
            'name': 'Organic Chemistry',
            'author': 'Clayden',
            'department': 'Chemistry',
            'edition': '2nd',
            'sr_no': '101'
        }, headers=admin_headers)

        assert response.status_code == 201
        data = response.json()
        assert data['status'] == 'Available'
        assert data['srNo'] == '101'
        assert data['bookId']
        assert data['uploadedBy']['username'] == admin.username

    def test_create_book_requires_admin(self, client, staff_headers):
        response = client.post('/api/library/books', json={
            'name': 'Organic Chemistry',
            'department': 'Chemistry'
        }, headers=staff_headers)
        assert response.status_code == 403

    def test_create_book_duplicate_sr_no(self, client, make_book, admin_headers):
        make_book(sr_no='7')
        response = client.post('/api/library/books', json={
            'name': 'Another', 'department': 'Science', 'sr_no': '7'
        }, headers=admin_headers)
        assert response.status_code == 400

    def test_list_sorted_by_numeric_serial(self, client, make_book, staff_headers):
        make_book(sr_no='10')
        make_book(sr_no='2')
        make_book(sr_no='1')
        make_book(sr_no=None, name='Unnumbered')

        response = client.get('/api/library/books', headers=staff_headers)

        assert response.status_code == 200
        assert [b['srNo'] for b in response.json()] == ['1', '2', '10', None]

    def test_list_filters(self, client, make_book, staff_headers):
        make_book(sr_no='1', name='Calculus', department='Maths')
        make_book(sr_no='2', name='Optics', department='Physics', status='Allocated')
        make_book(sr_no='3', name='Algebra', department='maths ', author='Artin')

        by_department = client.get('/api/library/books', params={'department': 'Maths'}, headers=staff_headers)
        assert {b['name'] for b in by_department.json()} == {'Calculus', 'Algebra'}

        by_status = client.get('/api/library/books', params={'status': 'Allocated'}, headers=staff_headers)
        assert [b['name'] for b in by_status.json()] == ['Optics']

        by_search = client.get('/api/library/books', params={'search': 'artin'}, headers=staff_headers)
        assert [b['name'] for b in by_search.json()] == ['Algebra']

    def test_list_shows_holders_by_book_id_and_serial(self, client, make_book, make_reservation, staff_headers):
        linked = make_book(sr_no='1', status='Allocated')
        unlinked = make_book(sr_no='2', status='Allocated')
        make_reservation(linked, reserver_id='S1', status='confirmed')
        make_reservation(unlinked, reserver_id='S2', status='confirmed', link=False)

        books = client.get('/api/library/books', headers=staff_headers).json()

        holders = {b['srNo']: [r['reserverId'] for r in b['reservations']] for b in books}
        assert holders == {'1': ['S1'], '2': ['S2']}

    def test_list_requires_auth(self, client, db):
        assert client.get('/api/library/books').status_code == 401

    def test_update_book(self, client, make_book, admin_headers):
        book = make_book(sr_no='5', name='Old Name')

        response = client.put(f'/api/library/books/{book.id}', json={'name': 'New Name'}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()['name'] == 'New Name'
        assert response.json()['srNo'] == '5'

    def test_update_missing_book(self, client, db, admin_headers):
        response = client.put('/api/library/books/999', json={'name': 'X'}, headers=admin_headers)
        assert response.status_code == 404

    def test_delete_book(self, client, db, make_book, admin_headers):
        book_id = make_book(sr_no='5').id

        response = client.delete(f'/api/library/books/{book_id}', headers=admin_headers)

        assert response.status_code == 200
        db.expire_all()
        assert db.get(Book, book_id) is None

    def test_delete_allocated_book_refused(self, client, make_book, make_reservation, admin_headers):
        book = make_book(sr_no='5', status='Allocated')
        make_reservation(book, status='confirmed')

        response = client.delete(f'/api/library/books/{book.id}', headers=admin_headers)
        assert response.status_code == 400

    def test_departments(self, client, make_book, staff_headers):
        make_book(department='Physics')
        make_book(department='Chemistry')
        make_book(department='Physics')

        response = client.get('/api/library/books/departments', headers=staff_headers)
        assert response.json() == ['Chemistry', 'Physics']

    def test_stats(self, client, make_book, staff_headers):
        make_book(status='Allocated')
        make_book()
        make_book()

        response = client.get('/api/library/books/stats', headers=staff_headers)

        data = response.json()
        assert (data['total'], data['available'], data['allocated']) == (3, 2, 1)
        assert data['allocationRate'] == 33
        assert len(data['recent']) == 3

    def test_stats_empty_catalog(self, client, staff_headers):
        data = client.get('/api/library/books/stats', headers=staff_headers).json()
        assert data['total'] == 0
        assert data['allocationRate'] == 0


@pytest.mark.api
class TestStatusToggle:

    def test_allocate_then_release(self, client, db, make_book, staff_headers, check_consistency):
        book = make_book(sr_no='9')

        allocated = client.post(f'/api/library/books/{book.id}/allocate', json={
            'reserver_name': 'Bob',
            'reserver_id': 'T42',
            'reserver_role': 'teacher'
        }, headers=staff_headers)

        assert allocated.status_code == 201
        assert allocated.json()['status'] == 'confirmed'
        check_consistency()

        detail = client.get(f'/api/library/books/{book.id}', headers=staff_headers).json()
        assert detail['status'] == 'Allocated'
        assert detail['reservations'][0]['reserverId'] == 'T42'

        released = client.post(f'/api/library/books/{book.id}/release', headers=staff_headers)

        assert released.status_code == 200
        assert released.json()['book']['status'] == 'Available'
        assert released.json()['archivedReservations'] == [allocated.json()['id']]
        db.expire_all()
        assert db.get(Reservation, int(allocated.json()['id'])).status == 'deleted'
        check_consistency()

    def test_allocate_conflict_then_force(self, client, make_book, make_reservation, staff_headers):
        held = make_book(sr_no='1', status='Allocated', name='First Loan')
        make_reservation(held, reserver_id='T42', status='confirmed')
        book = make_book(sr_no='2')
        body = {'reserver_name': 'Bob', 'reserver_id': 'T42', 'reserver_role': 'teacher'}

        conflict = client.post(f'/api/library/books/{book.id}/allocate', json=body, headers=staff_headers)
        assert conflict.status_code == 409
        assert conflict.json()['detail']['heldBook'] == 'First Loan'

        forced = client.post(f'/api/library/books/{book.id}/allocate', json={**body, 'force': True}, headers=staff_headers)
        assert forced.status_code == 201

    def test_allocate_allocated_book(self, client, make_book, staff_headers):
        book = make_book(status='Allocated')
        response = client.post(f'/api/library/books/{book.id}/allocate', json={
            'reserver_name': 'Bob', 'reserver_id': 'T42', 'reserver_role': 'teacher'
        }, headers=staff_headers)
        assert response.status_code == 400

    def test_release_missing_book(self, client, db, staff_headers):
        assert client.post('/api/library/books/999/release', headers=staff_headers).status_code == 404
