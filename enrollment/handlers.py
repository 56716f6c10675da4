from .models import Enrollment


def create_primary_enrollment(enrollment_request):
    """
    Default primary-enrollment collaborator, called inside the approval transaction.

    Deployments that own enrollment creation elsewhere point
    settings.PRIMARY_ENROLLMENT_HANDLER at their own callable. Whatever it does,
    the approved applicant must end up with an active Enrollment in the target
    course, otherwise the approved seat is released on reconciliation.
    """
    return Enrollment.objects.create(
        student_id=enrollment_request.student_id,
        course_id=enrollment_request.course_id,
        request=enrollment_request,
    )
