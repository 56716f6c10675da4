from django.test import TestCase, Client

from users.models import User


class UserApiTests(TestCase):

    def setUp(self):
        self.client = Client()

    def test_registration_creates_student(self):
        response = self.client.post('/api/users/register/', {
            'username': 'newstudent',
            'email': 'new@test.com',
            'password': 'testpass123',
        }, content_type='application/json')

        self.assertEqual(response.status_code, 201)
        user = User.objects.get(username='newstudent')
        self.assertEqual(user.role, User.Role.STUDENT)
        self.assertTrue(user.check_password('testpass123'))
        self.assertNotIn('password', response.json())

    def test_registration_cannot_pick_role(self):
        self.client.post('/api/users/register/', {
            'username': 'sneaky',
            'password': 'testpass123',
            'role': 'ADMIN',
        }, content_type='application/json')

        self.assertEqual(User.objects.get(username='sneaky').role, User.Role.STUDENT)

    def test_profile(self):
        User.objects.create_user(username='student', password='testpass123', email='s@test.com')
        self.client.login(username='student', password='testpass123')

        response = self.client.get('/api/users/me/')

        self.assertEqual(response.json()['email'], 's@test.com')
        self.assertEqual(response.json()['role'], 'STUDENT')
        self.assertFalse(response.json()['is_reviewer'])

    def test_reviewer_roles(self):
        """Test that admins and staff review requests, students do not"""
        self.assertTrue(User(role=User.Role.ADMIN).is_reviewer)
        self.assertTrue(User(role=User.Role.STUDENT, is_staff=True).is_reviewer)
        self.assertFalse(User(role=User.Role.STUDENT).is_reviewer)
        self.assertFalse(User(role=User.Role.INSTRUCTOR).is_reviewer)
