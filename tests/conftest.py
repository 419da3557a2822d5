from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from accounts.models import CustomUser
from escrow.services import EscrowService
from projects.models import Milestone, Project


@pytest.fixture(autouse=True)
def clear_throttle_cache():
    cache.clear()
    yield
    cache.clear()


def make_user(email, user_type):
    return CustomUser.objects.create_user(
        email=email,
        password='s3cure-Passw0rd',
        user_type=user_type,
        first_name=email.split('@')[0],
        last_name='Tester',
    )


@pytest.fixture
def client_user(db):
    return make_user('client@example.com', CustomUser.CLIENT)


@pytest.fixture
def expert_user(db):
    return make_user('expert@example.com', CustomUser.EXPERT)


@pytest.fixture
def other_client(db):
    return make_user('other-client@example.com', CustomUser.CLIENT)


@pytest.fixture
def other_expert(db):
    return make_user('other-expert@example.com', CustomUser.EXPERT)


@pytest.fixture
def project(client_user, expert_user):
    return Project.objects.create(client=client_user, expert=expert_user, title='Website redesign')


@pytest.fixture
def make_milestone(project):
    def _make(amount='300.00', status=Milestone.IN_PROGRESS, title='Milestone', target=None):
        return Milestone.objects.create(
            project=target or project,
            title=title,
            description=f'{title} deliverables',
            amount=Decimal(amount),
            status=status,
        )
    return _make


@pytest.fixture
def milestone(make_milestone):
    return make_milestone('300.00', title='Design mockups')


@pytest.fixture
def service():
    return EscrowService()


@pytest.fixture
def funded_project(service, client_user, project):
    service.fund(user=client_user, project_id=project.pk, amount=Decimal('1000.00'))
    return project


@pytest.fixture
def api():
    return APIClient()


@pytest.fixture
def client_api(client_user):
    api = APIClient()
    api.force_authenticate(user=client_user)
    return api


@pytest.fixture
def expert_api(expert_user):
    api = APIClient()
    api.force_authenticate(user=expert_user)
    return api
