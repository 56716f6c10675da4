import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Course',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=20, unique=True)),
                ('name', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('schedule', models.CharField(blank=True, help_text='e.g., Mon/Wed 10:00-11:30', max_length=100)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('end_date', models.DateField(blank=True, null=True)),
                ('capacity_max', models.PositiveIntegerField()),
                ('seats_available', models.PositiveIntegerField(default=0, editable=False)),
                ('status', models.CharField(choices=[('active', 'Active'), ('planned', 'Planned'), ('cancelled', 'Cancelled'), ('finished', 'Finished')], default='planned', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['code'],
                'indexes': [models.Index(fields=['status'], name='course_status_idx')],
            },
        ),
        migrations.CreateModel(
            name='Promotion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('free_months', models.PositiveIntegerField(default=1)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('end_date', models.DateField(blank=True, null=True)),
                ('active', models.BooleanField(default=True)),
                ('quota_configured', models.PositiveIntegerField(blank=True, help_text='Maximum number of approvals; empty means unlimited', null=True)),
                ('quota_used', models.PositiveIntegerField(default=0, editable=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('primary_course', models.ForeignKey(blank=True, help_text='Course the promotion is offered with; empty means any course', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='offered_promotions', to='courses.course')),
                ('promotional_course', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='promotions', to='courses.course')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
