import django.db.models.deletion
import enrollment.models
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('courses', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='EnrollmentRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(default=enrollment.models.generate_request_code, max_length=30, unique=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('observations', 'Observations'), ('approved', 'Approved'), ('rejected', 'Rejected')], default='pending', max_length=20)),
                ('applicant_identification', models.CharField(blank=True, max_length=30)),
                ('applicant_first_name', models.CharField(blank=True, max_length=100)),
                ('applicant_last_name', models.CharField(blank=True, max_length=100)),
                ('applicant_email', models.EmailField(blank=True, max_length=254)),
                ('applicant_phone', models.CharField(blank=True, max_length=20)),
                ('preferred_schedule', models.CharField(blank=True, max_length=100)),
                ('enrollment_fee', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('payment_method', models.CharField(choices=[('transfer', 'Bank transfer'), ('cash', 'Cash'), ('card', 'Card'), ('promotion', 'Promotion')], default='transfer', max_length=20)),
                ('notes', models.TextField(blank=True)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('course', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='requests', to='courses.course')),
                ('parent_request', models.ForeignKey(blank=True, help_text='Primary request this promotional request was created for', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='promotional_requests', to='enrollment.enrollmentrequest')),
                ('promotion', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='requests', to='courses.promotion')),
                ('reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reviewed_requests', to=settings.AUTH_USER_MODEL)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='enrollment_requests', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['course', 'status'], name='request_course_status_idx'),
                    models.Index(fields=['promotion', 'status'], name='request_promotion_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Enrollment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('active', 'Active'), ('suspended', 'Suspended'), ('finished', 'Finished')], default='active', max_length=20)),
                ('enrolled_at', models.DateTimeField(auto_now_add=True)),
                ('course', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrollments', to='courses.course')),
                ('request', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='enrollments', to='enrollment.enrollmentrequest')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrollments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [models.Index(fields=['course', 'status'], name='enrollment_course_status_idx')],
            },
        ),
    ]
