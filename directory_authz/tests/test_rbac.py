"""
Tests for the permission resolver.
"""

from unittest.mock import MagicMock

import pytest

from directory_authz.constants.roles import PlaceRole, SiteRole, UserRole
from directory_authz.platform.errors import PermissionDeniedError
from directory_authz.repositories.membership_repository import MembershipRepository
from directory_authz.services.rbac import PermissionResolver


def _mock_repo(user_role=None, **lookups):
    repo = MagicMock(spec=MembershipRepository)
    repo.get_user_role.return_value = user_role
    repo.get_site_role.return_value = lookups.get("site_role")
    repo.get_place_role.return_value = lookups.get("place_role")
    repo.get_place_site_id.return_value = lookups.get("place_site_id")
    return repo


@pytest.mark.security
class TestSuperadminBypass:

    def test_superadmin_allowed_on_any_place_without_lookups(self):
        repo = _mock_repo(user_role=UserRole.SUPERADMIN)
        resolver = PermissionResolver(repository=repo)

        assert resolver.has_place_permission("u1", "missing-place", PlaceRole.OWNER)
        repo.get_place_site_id.assert_not_called()
        repo.get_site_role.assert_not_called()
        repo.get_place_role.assert_not_called()

    def test_superadmin_allowed_on_any_site_without_lookups(self):
        repo = _mock_repo(user_role=UserRole.SUPERADMIN)
        resolver = PermissionResolver(repository=repo)

        assert resolver.has_site_permission("u1", "s1", SiteRole.SITEADMIN)
        repo.get_site_role.assert_not_called()

    def test_superadmin_can_create_events_without_place(self):
        repo = _mock_repo(user_role=UserRole.SUPERADMIN)
        resolver = PermissionResolver(repository=repo)

        assert resolver.can_create_event_for_place("u1", "s1", None)

    def test_assert_superadmin_passes_for_superadmin(self):
        resolver = PermissionResolver(repository=_mock_repo(user_role=UserRole.SUPERADMIN))

        resolver.assert_superadmin("u1", "s1", "Changing the site plan")

    @pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.VIEWER, None])
    def test_assert_superadmin_denies_everyone_else(self, role):
        repo = _mock_repo(user_role=role, site_role=SiteRole.SITEADMIN)
        resolver = PermissionResolver(repository=repo)

        with pytest.raises(PermissionDeniedError) as exc_info:
            resolver.assert_superadmin("u1", "s1", "Changing the site plan")

        assert exc_info.value.required_role == "superadmin"
        assert exc_info.value.resource_id == "s1"
        assert exc_info.value.message == "Changing the site plan requires superadmin"


@pytest.mark.security
class TestFailClosed:

    def test_missing_user_denied_for_site(self):
        resolver = PermissionResolver(repository=_mock_repo(user_role=None))
        assert not resolver.has_site_permission("ghost", "s1", SiteRole.VIEWER)

    def test_missing_user_denied_for_place(self):
        repo = _mock_repo(user_role=None, place_site_id="s1", site_role=SiteRole.SITEADMIN)
        resolver = PermissionResolver(repository=repo)

        assert not resolver.has_place_permission("ghost", "p1", PlaceRole.EDITOR)
        repo.get_site_role.assert_not_called()

    def test_missing_place_denied(self):
        repo = _mock_repo(user_role=UserRole.VIEWER, place_site_id=None)
        resolver = PermissionResolver(repository=repo)

        assert not resolver.has_place_permission("u1", "gone", PlaceRole.EDITOR)
        repo.get_place_role.assert_not_called()

    def test_resolver_requires_session_or_repository(self):
        with pytest.raises(ValueError):
            PermissionResolver()


class TestSitePermission:

    def test_member_with_sufficient_role(self, db_session, make_user, make_site, add_site_member):
        user = make_user()
        site = make_site()
        add_site_member(site, user, "editor")
        resolver = PermissionResolver(db_session)

        assert resolver.has_site_permission(user.id, site.id, SiteRole.VIEWER)
        assert resolver.has_site_permission(user.id, site.id, SiteRole.EDITOR)
        assert not resolver.has_site_permission(user.id, site.id, SiteRole.SITEADMIN)

    def test_non_member_denied(self, db_session, make_user, make_site):
        user = make_user(role="admin")
        site = make_site()

        assert not PermissionResolver(db_session).has_site_permission(
            user.id, site.id, SiteRole.VIEWER
        )

    def test_assert_raises_with_role_and_resource(self, db_session, make_user, make_site):
        user = make_user()
        site = make_site()

        with pytest.raises(PermissionDeniedError) as exc_info:
            PermissionResolver(db_session).assert_site_permission(
                user.id, site.id, SiteRole.SITEADMIN
            )

        assert exc_info.value.required_role == "siteadmin"
        assert exc_info.value.resource_id == site.id
        assert exc_info.value.http_status == 403
        assert str(exc_info.value) == (
            f"User does not have siteadmin permission for site {site.id}"
        )


class TestPlacePermission:

    def test_siteadmin_cascades_to_owner_on_every_place(
        self, db_session, make_user, make_site, make_place, add_site_member
    ):
        admin = make_user()
        site = make_site()
        place = make_place(site)
        add_site_member(site, admin, "siteadmin")

        assert PermissionResolver(db_session).has_place_permission(
            admin.id, place.id, PlaceRole.OWNER
        )

    def test_siteadmin_of_other_site_denied(
        self, db_session, make_user, make_site, make_place, add_site_member
    ):
        admin = make_user()
        own_site = make_site()
        other_site = make_site()
        place = make_place(other_site)
        add_site_member(own_site, admin, "siteadmin")

        assert not PermissionResolver(db_session).has_place_permission(
            admin.id, place.id, PlaceRole.EDITOR
        )

    def test_site_editor_does_not_cascade(
        self, db_session, make_user, make_site, make_place, add_site_member
    ):
        user = make_user()
        site = make_site()
        place = make_place(site)
        add_site_member(site, user, "editor")

        assert not PermissionResolver(db_session).has_place_permission(
            user.id, place.id, PlaceRole.EDITOR
        )

    def test_place_manager_ranks(
        self, db_session, make_user, make_site, make_place, add_place_member
    ):
        user = make_user()
        place = make_place(make_site())
        add_place_member(place, user, "manager")
        resolver = PermissionResolver(db_session)

        assert resolver.has_place_permission(user.id, place.id, PlaceRole.EDITOR)
        assert resolver.has_place_permission(user.id, place.id, PlaceRole.MANAGER)
        assert not resolver.has_place_permission(user.id, place.id, PlaceRole.OWNER)

    def test_assert_place_permission_message(self, db_session, make_user, make_site, make_place):
        user = make_user()
        place = make_place(make_site())

        with pytest.raises(PermissionDeniedError) as exc_info:
            PermissionResolver(db_session).assert_place_permission(
                user.id, place.id, PlaceRole.MANAGER
            )

        assert exc_info.value.resource_id == place.id
        assert "manager permission for place" in str(exc_info.value)

    def test_get_user_places_filters_by_site(
        self, db_session, make_user, make_site, make_place, add_place_member
    ):
        user = make_user()
        site_a, site_b = make_site(), make_site()
        place_a = make_place(site_a)
        place_b = make_place(site_b)
        add_place_member(place_a, user, "editor")
        add_place_member(place_b, user, "owner")
        resolver = PermissionResolver(db_session)

        assert set(resolver.get_user_places(user.id)) == {place_a.id, place_b.id}
        assert resolver.get_user_places(user.id, site_id=site_a.id) == [place_a.id]


class TestCreateEventPermission:

    def test_siteadmin_without_place(self, db_session, make_user, make_site, add_site_member):
        admin = make_user()
        site = make_site()
        add_site_member(site, admin, "siteadmin")

        assert PermissionResolver(db_session).can_create_event_for_place(admin.id, site.id, None)

    def test_non_siteadmin_needs_a_place(self, db_session, make_user, make_site, add_site_member):
        user = make_user()
        site = make_site()
        add_site_member(site, user, "editor")
        resolver = PermissionResolver(db_session)

        assert not resolver.can_create_event_for_place(user.id, site.id, None)
        with pytest.raises(PermissionDeniedError) as exc_info:
            resolver.assert_can_create_event_for_place(user.id, site.id, None)
        assert str(exc_info.value) == f"User cannot create events for place in site {site.id}"

    def test_place_manager_allowed_editor_denied(
        self, db_session, make_user, make_site, make_place, add_place_member
    ):
        site = make_site()
        place = make_place(site)
        manager, editor = make_user(), make_user()
        add_place_member(place, manager, "manager")
        add_place_member(place, editor, "editor")
        resolver = PermissionResolver(db_session)

        assert resolver.can_create_event_for_place(manager.id, site.id, place.id)
        assert not resolver.can_create_event_for_place(editor.id, site.id, place.id)
