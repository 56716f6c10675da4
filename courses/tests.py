from django.test import TestCase, Client

from users.models import User
from courses.models import Course, Promotion
from enrollment.models import EnrollmentRequest
from enrollment.services import create_request, decide


class CourseApiTests(TestCase):
    """Test cases for the course catalogue endpoints"""

    def setUp(self):
        self.client = Client()

        self.admin_user = User.objects.create_user(
            username='admin',
            password='testpass123',
            role='ADMIN'
        )
        self.student_user = User.objects.create_user(
            username='student',
            password='testpass123',
            role='STUDENT'
        )
        self.course = Course.objects.create(
            code='ENG101',
            name='English I',
            capacity_max=20,
            status=Course.Status.ACTIVE
        )

    def test_new_course_defaults(self):
        """Test that a new course starts planned with all seats free"""
        course = Course.objects.create(code='ENG102', name='English II', capacity_max=15)
        self.assertEqual(course.status, Course.Status.PLANNED)
        self.assertEqual(course.seats_available, 15)
        self.assertFalse(course.is_open)

    def test_availability(self):
        response = self.client.get(f'/api/courses/{self.course.id}/availability/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'id': self.course.id,
            'course': 'ENG101',
            'capacity_max': 20,
            'seats_available': 20,
            'status': 'active',
        })

    def test_availability_unknown_course(self):
        response = self.client.get('/api/courses/99999/availability/')
        self.assertEqual(response.status_code, 404)

    def test_filter_by_status(self):
        Course.objects.create(code='OLD100', name='Retired', capacity_max=5, status=Course.Status.FINISHED)

        response = self.client.get('/api/courses/', {'status': 'active'})

        codes = [course['code'] for course in response.json()['results']]
        self.assertEqual(codes, ['ENG101'])

    def test_admin_creates_course(self):
        self.client.login(username='admin', password='testpass123')

        response = self.client.post('/api/courses/', {
            'code': 'FRE101',
            'name': 'French I',
            'capacity_max': 12,
            'status': 'active',
        }, content_type='application/json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['seats_available'], 12)

    def test_student_cannot_create_course(self):
        self.client.login(username='student', password='testpass123')

        response = self.client.post('/api/courses/', {
            'code': 'FRE101',
            'name': 'French I',
            'capacity_max': 12,
        }, content_type='application/json')

        self.assertEqual(response.status_code, 403)

    def test_capacity_cannot_change(self):
        self.client.login(username='admin', password='testpass123')

        response = self.client.patch(
            f'/api/courses/{self.course.id}/',
            {'capacity_max': 30},
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 400)
        self.course.refresh_from_db()
        self.assertEqual(self.course.capacity_max, 20)

    def test_capacity_must_be_positive(self):
        self.client.login(username='admin', password='testpass123')

        response = self.client.post('/api/courses/', {
            'code': 'ZERO1',
            'name': 'Empty',
            'capacity_max': 0,
        }, content_type='application/json')

        self.assertEqual(response.status_code, 400)

    def test_seats_available_is_read_only(self):
        self.client.login(username='admin', password='testpass123')

        self.client.patch(
            f'/api/courses/{self.course.id}/',
            {'seats_available': 1, 'name': 'English One'},
            content_type='application/json'
        )

        self.course.refresh_from_db()
        self.assertEqual(self.course.name, 'English One')
        self.assertEqual(self.course.seats_available, 20)


class PromotionApiTests(TestCase):
    """Test cases for promotion listing, stats and toggling"""

    def setUp(self):
        self.client = Client()

        self.admin_user = User.objects.create_user(
            username='admin',
            password='testpass123',
            role='ADMIN'
        )
        self.student_user = User.objects.create_user(
            username='student',
            password='testpass123',
            role='STUDENT'
        )
        self.course = Course.objects.create(code='ENG101', name='English I', capacity_max=10, status=Course.Status.ACTIVE)
        self.other_course = Course.objects.create(code='FRE101', name='French I', capacity_max=10, status=Course.Status.ACTIVE)
        self.club = Course.objects.create(code='CONV-A', name='Conversation Club', capacity_max=5, status=Course.Status.ACTIVE)

        self.open_promo = Promotion.objects.create(name='Club for everyone', promotional_course=self.club)
        self.english_promo = Promotion.objects.create(
            name='Club with English', primary_course=self.course, promotional_course=self.club, quota_configured=2
        )
        self.french_promo = Promotion.objects.create(
            name='Club with French', primary_course=self.other_course, promotional_course=self.club
        )
        self.inactive_promo = Promotion.objects.create(name='Old club', promotional_course=self.club, active=False)

    def active_names(self, **params):
        response = self.client.get('/api/promotions/active/', params)
        self.assertEqual(response.status_code, 200)
        return {promotion['name'] for promotion in response.json()}

    def test_active_excludes_inactive_and_exhausted(self):
        Promotion.objects.filter(pk=self.english_promo.pk).update(quota_used=2)

        self.assertEqual(self.active_names(), {'Club for everyone', 'Club with French'})

    def test_active_for_course(self):
        """Test that unrestricted promotions are offered with every course"""
        self.assertEqual(self.active_names(course=self.course.id), {'Club for everyone', 'Club with English'})

    def test_stats(self):
        student = self.student_user
        first = create_request(student, self.course.id, promotion_id=self.english_promo.id)
        create_request(student, self.course.id, promotion_id=self.english_promo.id)
        decide(first.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.admin_user)

        response = self.client.get(f'/api/promotions/{self.english_promo.id}/stats/')

        self.assertEqual(response.json(), {
            'promotion': self.english_promo.id,
            'quota_configured': 2,
            'quota_used': 1,
            'quota_remaining': 1,
            'open_requests': 1,
            'approved_requests': 1,
        })

    def test_toggle(self):
        self.client.login(username='admin', password='testpass123')

        response = self.client.patch(f'/api/promotions/{self.open_promo.id}/toggle/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'id': self.open_promo.id, 'active': False})
        self.open_promo.refresh_from_db()
        self.assertFalse(self.open_promo.active)

    def test_student_cannot_toggle(self):
        self.client.login(username='student', password='testpass123')
        response = self.client.patch(f'/api/promotions/{self.open_promo.id}/toggle/')
        self.assertEqual(response.status_code, 403)

    def test_promotional_course_must_differ_from_primary(self):
        self.client.login(username='admin', password='testpass123')

        response = self.client.post('/api/promotions/', {
            'name': 'Self bundle',
            'primary_course': self.course.id,
            'promotional_course': self.course.id,
        }, content_type='application/json')

        self.assertEqual(response.status_code, 400)

    def test_quota_remaining(self):
        self.assertIsNone(self.open_promo.quota_remaining)
        self.assertEqual(self.english_promo.quota_remaining, 2)
        self.assertFalse(self.english_promo.quota_exhausted)

    def test_active_with_non_integer_course(self):
        response = self.client.get('/api/promotions/active/', {'course': 'abc'})
        self.assertEqual(response.status_code, 400)

    def test_promotional_course_locked_while_requests_are_open(self):
        """Test that open requests keep their promotional seat where it was taken"""
        other_club = Course.objects.create(code='CONV-B', name='Club B', capacity_max=5, status=Course.Status.ACTIVE)
        create_request(self.student_user, self.course.id, promotion_id=self.open_promo.id)
        self.client.login(username='admin', password='testpass123')

        response = self.client.patch(
            f'/api/promotions/{self.open_promo.id}/',
            {'promotional_course': other_club.id},
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 400)
        self.open_promo.refresh_from_db()
        self.assertEqual(self.open_promo.promotional_course, self.club)
        self.club.refresh_from_db()
        other_club.refresh_from_db()
        self.assertEqual(self.club.seats_available, 4)
        self.assertEqual(other_club.seats_available, 5)

    def test_promotional_course_can_change_once_requests_are_closed(self):
        other_club = Course.objects.create(code='CONV-B', name='Club B', capacity_max=5, status=Course.Status.ACTIVE)
        request = create_request(self.student_user, self.course.id, promotion_id=self.open_promo.id)
        decide(request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.admin_user)
        self.client.login(username='admin', password='testpass123')

        response = self.client.patch(
            f'/api/promotions/{self.open_promo.id}/',
            {'promotional_course': other_club.id},
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 200)
        self.open_promo.refresh_from_db()
        self.assertEqual(self.open_promo.promotional_course, other_club)

    def test_delete_referenced_promotion_is_conflict(self):
        create_request(self.student_user, self.course.id, promotion_id=self.open_promo.id)
        self.client.login(username='admin', password='testpass123')

        response = self.client.delete(f'/api/promotions/{self.open_promo.id}/')

        self.assertEqual(response.status_code, 409)
        self.assertIn('error', response.json())
        self.assertTrue(Promotion.objects.filter(pk=self.open_promo.id).exists())

    def test_delete_referenced_course_is_conflict(self):
        create_request(self.student_user, self.course.id)
        self.client.login(username='admin', password='testpass123')

        response = self.client.delete(f'/api/courses/{self.course.id}/')

        self.assertEqual(response.status_code, 409)
        self.assertTrue(Course.objects.filter(pk=self.course.id).exists())

    def test_delete_unreferenced_promotion(self):
        self.client.login(username='admin', password='testpass123')
        response = self.client.delete(f'/api/promotions/{self.inactive_promo.id}/')
        self.assertEqual(response.status_code, 204)
