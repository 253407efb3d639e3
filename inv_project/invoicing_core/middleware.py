from django.utils.deprecation import MiddlewareMixin

from .exceptions import NotMember
from .managers import clear_current_actor, set_current_actor
from .models import Company
from .services.membership import resolve_membership


class CurrentCompanyMiddleware(MiddlewareMixin):
    """
    Attach `request.company` and `request.membership` for the logged-in
    user, and bind the user as the audit actor for the request.
    Membership is resolved fresh on every request.
    """

    def process_request(self, request):
        user = getattr(request, "user", None)
        request.company = None
        request.membership = NotMember(user, None)

        if user is None or not user.is_authenticated:
            return
        set_current_actor(user)

        # If user switched companies, the choice is stored in the session;
        # otherwise fall back to the user's default company
        company_id = request.session.get("active_company_id")
        if company_id:
            company = Company.objects.filter(pk=company_id).first()
        else:
            company = getattr(user, "default_company", None)
        if company is None:
            return

        membership = resolve_membership(user, company)
        # a tampered session or a lapsed membership leaves no company selected
        if membership:
            request.company = company
        request.membership = membership

    def process_response(self, request, response):
        clear_current_actor()
        return response

    def process_exception(self, request, exception):
        clear_current_actor()
