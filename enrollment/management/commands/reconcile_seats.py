from django.core.management.base import BaseCommand, CommandError
from courses.models import Course
from enrollment.exceptions import NotFoundError
from enrollment.seats import reconcile_seats


class Command(BaseCommand):
    help = 'Recomputes available seats from open requests and active enrollments'

    def add_arguments(self, parser):
        parser.add_argument('--course', type=int, help='Only reconcile this course id')

    def handle(self, *args, **options):
        course_id = options.get('course')
        if course_id is not None:
            course_ids = [course_id]
        else:
            course_ids = list(Course.objects.order_by('id').values_list('id', flat=True))

        changed = 0
        for cid in course_ids:
            before = Course.objects.filter(pk=cid).values_list('seats_available', flat=True).first()
            try:
                available = reconcile_seats(cid)
            except NotFoundError:
                raise CommandError(f'Course {cid} does not exist')
            if before != available:
                changed += 1
                self.stdout.write(f'Course {cid}: {before} -> {available}')

        self.stdout.write(self.style.SUCCESS(
            f'Reconciled {len(course_ids)} courses ({changed} corrected)'
        ))
