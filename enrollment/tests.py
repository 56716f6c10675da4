import json
import threading
from io import StringIO
from unittest import mock

import redis

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature

from courses.models import Course, Promotion
from enrollment.handlers import create_primary_enrollment
from enrollment.exceptions import (
    ConflictError, InvalidTransitionError, NoSeatsError, NotFoundError, ValidationError,
)
from enrollment.models import Enrollment, EnrollmentRequest
from enrollment.seats import count_reservations, reconcile_seats, take_seat
from enrollment.services import create_request, decide, reassign_promotion
from enrollment.tasks import broadcast_seat_change, notify_request_decision

User = get_user_model()

APPLICANT = {
    'applicant_identification': '0912345678',
    'applicant_first_name': 'Ana',
    'applicant_last_name': 'Lopez',
    'applicant_email': 'ana@test.com',
}


class SeatTestCase(TestCase):
    """Shared fixtures: a reviewer, a student, a primary course and two promotional courses."""

    def setUp(self):
        self.reviewer = User.objects.create_user(
            username='reviewer',
            email='reviewer@test.com',
            password='testpass123',
            role='ADMIN'
        )
        self.student = User.objects.create_user(
            username='student1',
            email='student1@test.com',
            password='testpass123',
            role='STUDENT'
        )
        self.course = Course.objects.create(
            code='ENG101',
            name='English I',
            capacity_max=5,
            status=Course.Status.ACTIVE
        )
        self.promo_course_a = Course.objects.create(
            code='CONV-A',
            name='Conversation Club A',
            capacity_max=3,
            status=Course.Status.ACTIVE
        )
        self.promo_course_b = Course.objects.create(
            code='CONV-B',
            name='Conversation Club B',
            capacity_max=3,
            status=Course.Status.ACTIVE
        )
        self.promo_a = Promotion.objects.create(name='Free club A', promotional_course=self.promo_course_a)
        self.promo_b = Promotion.objects.create(name='Free club B', promotional_course=self.promo_course_b)

    def make_student(self, username):
        return User.objects.create_user(username=username, email=f'{username}@test.com', password='testpass123')

    def seats(self, course):
        course.refresh_from_db()
        return course.seats_available

    def assertSeatsReconciled(self, *courses):
        """The stored availability equals the value derived from requests and enrollments."""
        for course in courses:
            course.refresh_from_db()
            counts = count_reservations(course.id)
            expected = max(course.capacity_max - sum(counts.values()), 0)
            self.assertEqual(course.seats_available, expected, f"{course.code} drifted: {counts}")


class SeatLedgerTests(SeatTestCase):

    def test_new_course_starts_with_full_capacity(self):
        self.assertEqual(self.course.seats_available, 5)

    def test_reconcile_counts_requests_promotions_and_enrollments(self):
        """Every deduction term lowers availability by one"""
        create_request(self.student, self.course.id, promotion_id=self.promo_a.id, **APPLICANT)
        other = self.make_student('student2')
        create_request(other, self.promo_course_a.id, **APPLICANT)
        approved = EnrollmentRequest.objects.create(
            student=other, course=self.promo_course_a, status=EnrollmentRequest.Status.APPROVED
        )
        Enrollment.objects.create(student=other, course=self.promo_course_a, request=approved)

        counts = count_reservations(self.promo_course_a.id)
        self.assertEqual(counts, {'primary': 1, 'promotional': 1, 'enrolled': 1})
        self.assertEqual(reconcile_seats(self.promo_course_a.id), 0)

    def test_reconcile_is_idempotent(self):
        create_request(self.student, self.course.id, **APPLICANT)
        first = reconcile_seats(self.course.id)
        second = reconcile_seats(self.course.id)
        self.assertEqual(first, second)
        self.assertEqual(first, 4)

    def test_reconcile_corrects_drift(self):
        create_request(self.student, self.course.id, **APPLICANT)
        Course.objects.filter(pk=self.course.pk).update(seats_available=5)

        self.assertEqual(reconcile_seats(self.course.id), 4)
        self.assertEqual(self.seats(self.course), 4)

    def test_reconcile_never_goes_negative(self):
        for i in range(7):
            student = self.make_student(f'over{i}')
            request = EnrollmentRequest.objects.create(
                student=student, course=self.course, status=EnrollmentRequest.Status.APPROVED
            )
            Enrollment.objects.create(student=student, course=self.course, request=request)

        self.assertEqual(reconcile_seats(self.course.id), 0)

    def test_suspended_and_finished_enrollments_do_not_hold_seats(self):
        request = EnrollmentRequest.objects.create(
            student=self.student, course=self.course, status=EnrollmentRequest.Status.APPROVED
        )
        Enrollment.objects.create(
            student=self.student, course=self.course, request=request, status=Enrollment.Status.FINISHED
        )
        self.assertEqual(reconcile_seats(self.course.id), 5)

    def test_reconcile_unknown_course(self):
        with self.assertRaises(NotFoundError):
            reconcile_seats(99999)

    def test_take_seat_stops_at_zero(self):
        Course.objects.filter(pk=self.course.pk).update(seats_available=1)
        self.assertTrue(take_seat(self.course.id))
        self.assertFalse(take_seat(self.course.id))
        self.assertEqual(self.seats(self.course), 0)


class RequestIntakeTests(SeatTestCase):

    def setUp(self):
        super().setUp()
        self.client.force_login(self.student)

    def post_request(self, **extra):
        data = {'course_id': self.course.id, **APPLICANT, **extra}
        return self.client.post('/api/enroll/', data, content_type='application/json')

    def test_capacity_scenario(self):
        """Five requests fill the course, the sixth is refused, a rejection frees a seat"""
        remaining = []
        for _ in range(5):
            response = self.post_request()
            self.assertEqual(response.status_code, 201)
            remaining.append(response.json()['seats_remaining'])
        self.assertEqual(remaining, [4, 3, 2, 1, 0])

        response = self.post_request()
        self.assertEqual(response.status_code, 409)
        self.assertIn('No seats', response.json()['error'])

        first = EnrollmentRequest.objects.filter(course=self.course).order_by('id').first()
        decide(first.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)

        response = self.client.get(f'/api/courses/{self.course.id}/availability/')
        self.assertEqual(response.json()['seats_available'], 1)

        response = self.post_request()
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['seats_remaining'], 0)
        self.assertSeatsReconciled(self.course)

    def test_response_shape(self):
        response = self.post_request()
        body = response.json()

        request = EnrollmentRequest.objects.get(pk=body['request_id'])
        self.assertEqual(body['course'], 'ENG101')
        self.assertEqual(body['code'], request.code)
        self.assertTrue(request.code.startswith('REQ-'))
        self.assertEqual(request.status, EnrollmentRequest.Status.PENDING)
        self.assertEqual(request.student, self.student)
        self.assertEqual(request.applicant_email, 'ana@test.com')

    def test_course_not_active_is_refused(self):
        Course.objects.filter(pk=self.course.pk).update(status=Course.Status.FINISHED)

        response = self.post_request()

        self.assertEqual(response.status_code, 409)
        self.assertFalse(EnrollmentRequest.objects.exists())
        self.assertEqual(self.seats(self.course), 5)

    def test_unknown_course(self):
        response = self.post_request(course_id=99999)
        self.assertEqual(response.status_code, 404)

    def test_missing_applicant_data(self):
        response = self.client.post('/api/enroll/', {'course_id': self.course.id}, content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(EnrollmentRequest.objects.exists())

    def test_requires_authentication(self):
        self.client.logout()
        response = self.post_request()
        self.assertIn(response.status_code, (401, 403))

    def test_promotion_reserves_two_seats(self):
        response = self.post_request(promotion_id=self.promo_a.id)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['seats_remaining'], 4)
        self.assertEqual(self.seats(self.promo_course_a), 2)
        request = EnrollmentRequest.objects.get()
        self.assertEqual(request.promotion, self.promo_a)
        self.assertSeatsReconciled(self.course, self.promo_course_a)

    def test_promotion_does_not_consume_quota_on_reservation(self):
        self.post_request(promotion_id=self.promo_a.id)
        self.promo_a.refresh_from_db()
        self.assertEqual(self.promo_a.quota_used, 0)

    def test_inactive_promotion_rolls_back_request(self):
        self.promo_a.active = False
        self.promo_a.save()

        response = self.post_request(promotion_id=self.promo_a.id)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(EnrollmentRequest.objects.exists())
        self.assertEqual(self.seats(self.course), 5)
        self.assertEqual(self.seats(self.promo_course_a), 3)

    def test_full_promotional_course_rolls_back_request(self):
        Course.objects.filter(pk=self.promo_course_a.pk).update(seats_available=0)

        response = self.post_request(promotion_id=self.promo_a.id)

        self.assertEqual(response.status_code, 409)
        self.assertFalse(EnrollmentRequest.objects.exists())
        self.assertEqual(self.seats(self.course), 5)

    def test_promotional_course_not_active(self):
        Course.objects.filter(pk=self.promo_course_a.pk).update(status=Course.Status.CANCELLED)

        response = self.post_request(promotion_id=self.promo_a.id)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(EnrollmentRequest.objects.exists())

    def test_exhausted_quota(self):
        Promotion.objects.filter(pk=self.promo_a.pk).update(quota_configured=2, quota_used=2)

        response = self.post_request(promotion_id=self.promo_a.id)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(EnrollmentRequest.objects.exists())

    def test_promotion_for_another_course(self):
        other_course = Course.objects.create(code='FRE101', name='French I', capacity_max=5, status=Course.Status.ACTIVE)
        self.promo_a.primary_course = other_course
        self.promo_a.save()

        response = self.post_request(promotion_id=self.promo_a.id)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(EnrollmentRequest.objects.exists())

    def test_unknown_promotion(self):
        response = self.post_request(promotion_id=99999)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.seats(self.course), 5)

    def test_lost_race_for_course_seat(self):
        """The guarded decrement finds no seat left after the availability read"""
        with mock.patch('enrollment.services.take_seat', return_value=False):
            with self.assertRaises(ConflictError) as ctx:
                create_request(self.student, self.course.id, **APPLICANT)

        self.assertNotIsInstance(ctx.exception, NoSeatsError)
        self.assertFalse(EnrollmentRequest.objects.exists())
        self.assertEqual(self.seats(self.course), 5)

    def test_lost_race_for_promotional_seat_rolls_back_course_seat(self):
        def promotional_seat_gone(course_id):
            if course_id == self.course.id:
                return take_seat(course_id)
            return False

        with mock.patch('enrollment.services.take_seat', side_effect=promotional_seat_gone):
            with self.assertRaises(ConflictError) as ctx:
                create_request(self.student, self.course.id, promotion_id=self.promo_a.id, **APPLICANT)

        self.assertIn('just taken', ctx.exception.message)
        self.assertFalse(EnrollmentRequest.objects.exists())
        self.assertEqual(self.seats(self.course), 5)
        self.assertEqual(self.seats(self.promo_course_a), 3)

    def test_lost_race_via_api_is_conflict(self):
        with mock.patch('enrollment.services.take_seat', return_value=False):
            response = self.post_request()

        self.assertEqual(response.status_code, 409)
        self.assertFalse(EnrollmentRequest.objects.exists())

    def test_service_raises_no_seats(self):
        Course.objects.filter(pk=self.course.pk).update(seats_available=0)
        with self.assertRaises(NoSeatsError):
            create_request(self.student, self.course.id, **APPLICANT)


class DecisionEngineTests(SeatTestCase):

    def setUp(self):
        super().setUp()
        self.request = create_request(self.student, self.course.id, promotion_id=self.promo_a.id, **APPLICANT)

    def test_reject_releases_both_seats(self):
        decide(self.request.id, EnrollmentRequest.Status.REJECTED, notes='Invalid receipt', reviewed_by=self.reviewer)

        self.request.refresh_from_db()
        self.assertEqual(self.request.status, EnrollmentRequest.Status.REJECTED)
        self.assertEqual(self.request.notes, 'Invalid receipt')
        self.assertEqual(self.request.reviewed_by, self.reviewer)
        self.assertIsNotNone(self.request.reviewed_at)
        self.assertEqual(self.seats(self.course), 5)
        self.assertEqual(self.seats(self.promo_course_a), 3)

    def test_approve_with_promotion(self):
        decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        # Primary enrollment
        self.assertTrue(Enrollment.objects.filter(
            student=self.student, course=self.course, request=self.request, status=Enrollment.Status.ACTIVE
        ).exists())

        # Secondary, pre-approved promotional request and enrollment
        secondary = EnrollmentRequest.objects.get(parent_request=self.request)
        self.assertEqual(secondary.course, self.promo_course_a)
        self.assertEqual(secondary.status, EnrollmentRequest.Status.APPROVED)
        self.assertEqual(secondary.enrollment_fee, 0)
        self.assertEqual(secondary.payment_method, EnrollmentRequest.PaymentMethod.PROMOTION)
        self.assertTrue(Enrollment.objects.filter(course=self.promo_course_a, request=secondary).exists())

        self.promo_a.refresh_from_db()
        self.assertEqual(self.promo_a.quota_used, 1)

        # Seats stay taken; only the accounting category changed
        self.assertEqual(self.seats(self.course), 4)
        self.assertEqual(self.seats(self.promo_course_a), 2)
        self.assertEqual(count_reservations(self.promo_course_a.id), {'primary': 0, 'promotional': 0, 'enrolled': 1})
        self.assertSeatsReconciled(self.course, self.promo_course_a)

    def test_approve_twice_consumes_quota_once(self):
        decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)
        with self.assertRaises(InvalidTransitionError):
            decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        self.promo_a.refresh_from_db()
        self.assertEqual(self.promo_a.quota_used, 1)
        self.assertEqual(Enrollment.objects.filter(course=self.course).count(), 1)
        self.assertEqual(EnrollmentRequest.objects.filter(parent_request=self.request).count(), 1)

    def test_rejecting_approved_request_has_no_effect(self):
        decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)
        before = (self.seats(self.course), self.seats(self.promo_course_a))

        with self.assertRaises(InvalidTransitionError):
            decide(self.request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)

        self.request.refresh_from_db()
        self.assertEqual(self.request.status, EnrollmentRequest.Status.APPROVED)
        self.assertEqual((self.seats(self.course), self.seats(self.promo_course_a)), before)

    def test_rejecting_twice_does_not_double_credit(self):
        decide(self.request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)
        with self.assertRaises(InvalidTransitionError):
            decide(self.request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)
        self.assertEqual(self.seats(self.course), 5)

    def test_observations_keeps_seats(self):
        decide(self.request.id, EnrollmentRequest.Status.OBSERVATIONS, notes='Blurry ID', reviewed_by=self.reviewer)

        self.request.refresh_from_db()
        self.assertEqual(self.request.status, EnrollmentRequest.Status.OBSERVATIONS)
        self.assertEqual(self.seats(self.course), 4)
        self.assertEqual(self.seats(self.promo_course_a), 2)

        # Still decidable afterwards
        decide(self.request.id, EnrollmentRequest.Status.OBSERVATIONS, reviewed_by=self.reviewer)
        decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)
        self.assertEqual(self.seats(self.course), 4)

    def test_pending_is_not_a_decision(self):
        with self.assertRaises(ValidationError):
            decide(self.request.id, EnrollmentRequest.Status.PENDING, reviewed_by=self.reviewer)

    def test_unknown_request(self):
        with self.assertRaises(NotFoundError):
            decide(99999, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

    def test_approve_without_promotion(self):
        plain = create_request(self.make_student('student2'), self.course.id, **APPLICANT)

        decide(plain.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        self.assertEqual(Enrollment.objects.filter(request=plain).count(), 1)
        self.assertFalse(EnrollmentRequest.objects.filter(parent_request=plain).exists())
        self.assertEqual(self.seats(self.course), 3)

    def test_quota_scenario(self):
        """A promotion with a quota of one can only be approved once"""
        Promotion.objects.filter(pk=self.promo_a.pk).update(quota_configured=1)
        second = create_request(self.make_student('student2'), self.course.id, promotion_id=self.promo_a.id, **APPLICANT)

        decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)
        with self.assertRaises(ConflictError):
            decide(second.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        self.promo_a.refresh_from_db()
        self.assertEqual(self.promo_a.quota_used, 1)
        second.refresh_from_db()
        self.assertEqual(second.status, EnrollmentRequest.Status.PENDING)
        self.assertFalse(Enrollment.objects.filter(request=second).exists())
        self.assertFalse(EnrollmentRequest.objects.filter(parent_request=second).exists())
        self.assertSeatsReconciled(self.course, self.promo_course_a)

    def test_primary_enrollment_handler_is_loaded_from_settings(self):
        with mock.patch('enrollment.handlers.create_primary_enrollment', wraps=create_primary_enrollment) as handler:
            decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        handler.assert_called_once()
        self.assertEqual(handler.call_args.args[0].pk, self.request.pk)

    def test_failing_handler_rolls_back_decision(self):
        with mock.patch('enrollment.handlers.create_primary_enrollment', side_effect=ConflictError('Roster closed')):
            with self.assertRaises(ConflictError):
                decide(self.request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        self.request.refresh_from_db()
        self.assertEqual(self.request.status, EnrollmentRequest.Status.PENDING)
        self.promo_a.refresh_from_db()
        self.assertEqual(self.promo_a.quota_used, 0)


class DecisionViewTests(SeatTestCase):

    def setUp(self):
        super().setUp()
        self.request = create_request(self.student, self.course.id, **APPLICANT)

    def put_decision(self, request_id, decision, **extra):
        return self.client.put(
            f'/api/requests/{request_id}/decision/',
            {'decision': decision, **extra},
            content_type='application/json'
        )

    def test_reviewer_can_decide(self):
        self.client.force_login(self.reviewer)
        response = self.put_decision(self.request.id, 'approved', notes='All documents valid')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True})

    def test_student_cannot_decide(self):
        self.client.force_login(self.student)
        response = self.put_decision(self.request.id, 'approved')
        self.assertEqual(response.status_code, 403)

    def test_invalid_transition_is_bad_request(self):
        self.client.force_login(self.reviewer)
        self.put_decision(self.request.id, 'rejected')

        response = self.put_decision(self.request.id, 'rejected')

        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.json())

    def test_unknown_decision_value(self):
        self.client.force_login(self.reviewer)
        response = self.put_decision(self.request.id, 'pending')
        self.assertEqual(response.status_code, 400)

    def test_unknown_request(self):
        self.client.force_login(self.reviewer)
        response = self.put_decision(99999, 'approved')
        self.assertEqual(response.status_code, 404)


class PromotionReassignmentTests(SeatTestCase):

    def setUp(self):
        super().setUp()
        self.promo_course_c = Course.objects.create(
            code='CONV-C',
            name='Conversation Club C',
            capacity_max=3,
            status=Course.Status.ACTIVE
        )
        self.promo_c = Promotion.objects.create(name='Free club C', promotional_course=self.promo_course_c)
        self.request = create_request(self.student, self.course.id, promotion_id=self.promo_a.id, **APPLICANT)

    def test_swap_moves_the_promotional_seat(self):
        reassign_promotion(self.request.id, self.promo_b.id)

        self.request.refresh_from_db()
        self.assertEqual(self.request.promotion, self.promo_b)
        self.assertEqual(self.seats(self.promo_course_a), 3)
        self.assertEqual(self.seats(self.promo_course_b), 2)
        self.assertEqual(self.seats(self.course), 4)

    def test_chained_swap_matches_direct_swap(self):
        """A -> B -> C leaves the same accounting as A -> C"""
        reassign_promotion(self.request.id, self.promo_b.id)
        reassign_promotion(self.request.id, self.promo_c.id)

        self.assertEqual(self.seats(self.promo_course_a), 3)
        self.assertEqual(self.seats(self.promo_course_b), 3)
        self.assertEqual(self.seats(self.promo_course_c), 2)
        self.assertSeatsReconciled(self.course, self.promo_course_a, self.promo_course_b, self.promo_course_c)

    def test_failed_acquisition_keeps_current_reservation(self):
        Course.objects.filter(pk=self.promo_course_b.pk).update(seats_available=0)

        with self.assertRaises(NoSeatsError):
            reassign_promotion(self.request.id, self.promo_b.id)

        self.request.refresh_from_db()
        self.assertEqual(self.request.promotion, self.promo_a)
        self.assertEqual(self.seats(self.promo_course_a), 2)

    def test_swap_between_promotions_of_the_same_course(self):
        same_course_promo = Promotion.objects.create(name='Club A, two months', promotional_course=self.promo_course_a, free_months=2)
        Course.objects.filter(pk=self.promo_course_a.pk).update(seats_available=0)

        reassign_promotion(self.request.id, same_course_promo.id)

        self.request.refresh_from_db()
        self.assertEqual(self.request.promotion, same_course_promo)
        self.assertSeatsReconciled(self.promo_course_a)
        self.assertEqual(self.seats(self.promo_course_a), 2)

    def test_attach_promotion_to_request_without_one(self):
        plain = create_request(self.make_student('student2'), self.course.id, **APPLICANT)

        reassign_promotion(plain.id, self.promo_b.id)

        self.assertEqual(self.seats(self.promo_course_b), 2)

    def test_same_promotion_is_rejected(self):
        with self.assertRaises(ValidationError):
            reassign_promotion(self.request.id, self.promo_a.id)

    def test_closed_request_cannot_change(self):
        decide(self.request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)
        with self.assertRaises(InvalidTransitionError):
            reassign_promotion(self.request.id, self.promo_b.id)
        self.assertEqual(self.seats(self.promo_course_b), 3)

    def test_api_owner_can_reassign(self):
        self.client.force_login(self.student)
        response = self.client.put(
            f'/api/requests/{self.request.id}/promotion/',
            {'promotion_id': self.promo_b.id},
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True})

    def test_api_other_student_cannot_reassign(self):
        self.client.force_login(self.make_student('intruder'))
        response = self.client.put(
            f'/api/requests/{self.request.id}/promotion/',
            {'promotion_id': self.promo_b.id},
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 403)

    def test_api_no_seats_on_new_promotion(self):
        Course.objects.filter(pk=self.promo_course_b.pk).update(seats_available=0)
        self.client.force_login(self.student)
        response = self.client.put(
            f'/api/requests/{self.request.id}/promotion/',
            {'promotion_id': self.promo_b.id},
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 409)

    def test_lost_race_for_new_promotional_seat(self):
        with mock.patch('enrollment.services.take_seat', return_value=False):
            with self.assertRaises(ConflictError) as ctx:
                reassign_promotion(self.request.id, self.promo_b.id)

        self.assertNotIsInstance(ctx.exception, NoSeatsError)
        self.request.refresh_from_db()
        self.assertEqual(self.request.promotion, self.promo_a)
        self.assertEqual(self.seats(self.promo_course_a), 2)
        self.assertEqual(self.seats(self.promo_course_b), 3)

    def test_api_unknown_request(self):
        self.client.force_login(self.student)
        response = self.client.put(
            '/api/requests/99999/promotion/',
            {'promotion_id': self.promo_b.id},
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 404)


class RequestListingTests(SeatTestCase):

    def setUp(self):
        super().setUp()
        self.other = self.make_student('student2')
        self.mine = create_request(self.student, self.course.id, **APPLICANT)
        self.theirs = create_request(self.other, self.course.id, **APPLICANT)
        decide(self.theirs.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)

    def test_student_sees_own_requests(self):
        self.client.force_login(self.student)
        response = self.client.get('/api/requests/')
        ids = [item['id'] for item in response.json()['results']]
        self.assertEqual(ids, [self.mine.id])

    def test_reviewer_filters_by_status(self):
        self.client.force_login(self.reviewer)
        response = self.client.get('/api/requests/', {'status': 'rejected'})
        ids = [item['id'] for item in response.json()['results']]
        self.assertEqual(ids, [self.theirs.id])

    def test_counts_by_status(self):
        self.client.force_login(self.reviewer)
        response = self.client.get('/api/requests/counts/')
        self.assertEqual(response.json(), {'pending': 1, 'observations': 0, 'approved': 0, 'rejected': 1})

    def test_non_integer_course_filter(self):
        self.client.force_login(self.reviewer)

        self.assertEqual(self.client.get('/api/requests/', {'course': 'abc'}).status_code, 400)
        response = self.client.get('/api/requests/counts/', {'course': 'abc'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.json())

    def test_course_filter(self):
        self.client.force_login(self.reviewer)
        response = self.client.get('/api/requests/', {'course': self.promo_course_a.id})
        self.assertEqual(response.json()['count'], 0)

    def test_counts_require_reviewer(self):
        self.client.force_login(self.student)
        response = self.client.get('/api/requests/counts/')
        self.assertEqual(response.status_code, 403)

    def test_student_sees_own_enrollments(self):
        decide(self.mine.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)
        self.client.force_login(self.other)
        response = self.client.get('/api/enrollments/')
        self.assertEqual(response.json()['count'], 0)

        self.client.force_login(self.student)
        response = self.client.get('/api/enrollments/')
        self.assertEqual(response.json()['results'][0]['course_code'], 'ENG101')


class ReconcileCommandTests(SeatTestCase):

    def test_command_fixes_drifted_courses(self):
        create_request(self.student, self.course.id, promotion_id=self.promo_a.id, **APPLICANT)
        Course.objects.update(seats_available=0)

        out = StringIO()
        call_command('reconcile_seats', stdout=out)

        self.assertIn('Reconciled 3 courses (3 corrected)', out.getvalue())
        self.assertEqual(self.seats(self.course), 4)
        self.assertEqual(self.seats(self.promo_course_a), 2)
        self.assertEqual(self.seats(self.promo_course_b), 3)

    def test_command_for_single_course(self):
        Course.objects.update(seats_available=0)

        call_command('reconcile_seats', course=self.course.id, stdout=StringIO())

        self.assertEqual(self.seats(self.course), 5)
        self.assertEqual(self.seats(self.promo_course_a), 0)


@mock.patch('enrollment.services.notify_request_decision')
@mock.patch('enrollment.services.broadcast_seat_change')
class SeatEventTests(TransactionTestCase):
    """Seat-change events are emitted once per affected course, after commit only"""

    def setUp(self):
        self.reviewer = User.objects.create_user(username='reviewer', password='testpass123', role='ADMIN')
        self.student = User.objects.create_user(username='student1', password='testpass123')
        self.course = Course.objects.create(code='ENG101', name='English I', capacity_max=2, status=Course.Status.ACTIVE)
        self.promo_course = Course.objects.create(code='CONV-A', name='Club', capacity_max=2, status=Course.Status.ACTIVE)
        self.promotion = Promotion.objects.create(name='Free club', promotional_course=self.promo_course)

    def sent_events(self, broadcast):
        return [call.args[0] for call in broadcast.delay.call_args_list]

    def test_create_emits_reserve_per_course(self, broadcast, notify):
        create_request(self.student, self.course.id, promotion_id=self.promotion.id, **APPLICANT)

        events = self.sent_events(broadcast)
        self.assertEqual(
            [(e['course_id'], e['category'], e['action'], e['cause']) for e in events],
            [
                (self.course.id, 'primary', 'reserve', 'request_created'),
                (self.promo_course.id, 'promotional', 'reserve', 'request_created'),
            ]
        )
        self.assertTrue(all('timestamp' in e for e in events))

    def test_rejection_emits_release_and_notifies(self, broadcast, notify):
        request = create_request(self.student, self.course.id, promotion_id=self.promotion.id, **APPLICANT)
        broadcast.reset_mock()

        decide(request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)

        actions = {(e['course_id'], e['action']) for e in self.sent_events(broadcast)}
        self.assertEqual(actions, {(self.course.id, 'release'), (self.promo_course.id, 'release')})
        notify.delay.assert_called_once_with(request.id)

    def test_observations_emits_no_seat_event(self, broadcast, notify):
        request = create_request(self.student, self.course.id, **APPLICANT)
        broadcast.reset_mock()

        decide(request.id, EnrollmentRequest.Status.OBSERVATIONS, reviewed_by=self.reviewer)

        broadcast.delay.assert_not_called()
        notify.delay.assert_called_once_with(request.id)

    def test_approval_emits_no_seat_event(self, broadcast, notify):
        request = create_request(self.student, self.course.id, promotion_id=self.promotion.id, **APPLICANT)
        broadcast.reset_mock()

        decide(request.id, EnrollmentRequest.Status.APPROVED, reviewed_by=self.reviewer)

        broadcast.delay.assert_not_called()
        notify.delay.assert_called_once_with(request.id)

    def test_broker_outage_does_not_fail_committed_request(self, broadcast, notify):
        """A request that committed is reported as created even if its event cannot be queued"""
        broadcast.delay.side_effect = ConnectionError('broker unreachable')
        self.client.force_login(self.student)

        response = self.client.post(
            '/api/enroll/',
            {'course_id': self.course.id, **APPLICANT},
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(EnrollmentRequest.objects.count(), 1)
        self.assertEqual(Course.objects.get(pk=self.course.pk).seats_available, 1)

    def test_broker_outage_does_not_fail_committed_decision(self, broadcast, notify):
        request = create_request(self.student, self.course.id, **APPLICANT)
        broadcast.delay.side_effect = ConnectionError('broker unreachable')
        notify.delay.side_effect = ConnectionError('broker unreachable')

        decide(request.id, EnrollmentRequest.Status.REJECTED, reviewed_by=self.reviewer)

        request.refresh_from_db()
        self.assertEqual(request.status, EnrollmentRequest.Status.REJECTED)
        self.assertEqual(Course.objects.get(pk=self.course.pk).seats_available, 2)

    def test_failed_operation_emits_nothing(self, broadcast, notify):
        Course.objects.filter(pk=self.promo_course.pk).update(seats_available=0)

        with self.assertRaises(NoSeatsError):
            create_request(self.student, self.course.id, promotion_id=self.promotion.id, **APPLICANT)

        broadcast.delay.assert_not_called()
        self.assertEqual(Course.objects.get(pk=self.course.pk).seats_available, 2)
        self.assertFalse(EnrollmentRequest.objects.exists())

    def test_reassignment_emits_reserve_and_release(self, broadcast, notify):
        other_course = Course.objects.create(code='CONV-B', name='Club B', capacity_max=2, status=Course.Status.ACTIVE)
        other_promotion = Promotion.objects.create(name='Free club B', promotional_course=other_course)
        request = create_request(self.student, self.course.id, promotion_id=self.promotion.id, **APPLICANT)
        broadcast.reset_mock()

        reassign_promotion(request.id, other_promotion.id)

        actions = [(e['course_id'], e['action']) for e in self.sent_events(broadcast)]
        self.assertEqual(actions, [(other_course.id, 'reserve'), (self.promo_course.id, 'release')])


@skipUnlessDBFeature('has_select_for_update')
@mock.patch('enrollment.services.broadcast_seat_change')
class ConcurrentIntakeTests(TransactionTestCase):
    """Concurrent writers against a real row-locking database"""

    def setUp(self):
        self.course = Course.objects.create(code='RUSH1', name='Rush', capacity_max=3, status=Course.Status.ACTIVE)
        self.students = [
            User.objects.create_user(username=f'rush{i}', password='testpass123')
            for i in range(8)
        ]

    def test_no_oversell(self, broadcast):
        barrier = threading.Barrier(len(self.students))
        outcomes = []
        lock = threading.Lock()

        def attempt(student):
            try:
                barrier.wait()
                create_request(student, self.course.id, **APPLICANT)
                outcome = 'created'
            except ConflictError:
                outcome = 'refused'
            finally:
                connection.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt, args=(student,)) for student in self.students]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count('created'), 3)
        self.assertEqual(outcomes.count('refused'), 5)
        self.assertEqual(EnrollmentRequest.objects.filter(course=self.course).count(), 3)
        self.assertEqual(Course.objects.get(pk=self.course.pk).seats_available, 0)


class TaskTests(SeatTestCase):

    def test_notify_request_decision_sends_email(self):
        request = create_request(self.student, self.course.id, **APPLICANT)
        decide(request.id, EnrollmentRequest.Status.OBSERVATIONS, notes='Upload a clearer receipt', reviewed_by=self.reviewer)

        result = notify_request_decision(request.id)

        self.assertIn('ana@test.com', result)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('ENG101', mail.outbox[0].subject)
        self.assertIn('Upload a clearer receipt', mail.outbox[0].body)

    def test_notify_unknown_request(self):
        self.assertEqual(notify_request_decision(99999), 'Request 99999 not found.')
        self.assertEqual(len(mail.outbox), 0)

    @mock.patch('enrollment.tasks.redis.from_url')
    def test_broadcast_publishes_json(self, from_url):
        from_url.return_value.publish.return_value = 2
        event = {'course_id': self.course.id, 'category': 'primary', 'action': 'reserve'}

        self.assertEqual(broadcast_seat_change(event), 2)

        channel, payload = from_url.return_value.publish.call_args.args
        self.assertEqual(channel, 'seat-changes')
        self.assertEqual(json.loads(payload), event)

    @mock.patch('enrollment.tasks.redis.from_url')
    def test_broadcast_survives_redis_outage(self, from_url):
        from_url.return_value.publish.side_effect = redis.ConnectionError('down')
        self.assertEqual(broadcast_seat_change({'course_id': self.course.id}), 0)
