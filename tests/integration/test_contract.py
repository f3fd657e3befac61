"""
Contract tests for KIPR clients.

Every test runs against both the memory backend and the REST backend.

Tests cover:
- The alice/robot-code walkthrough
- HEAD ordering and non-destructive restore
- File read/update/move semantics and revisions
- Brief/open equivalence
- Closed-handle behavior and leases after logout
- Organization membership, permissions and cascading delete
- Authentication failures
"""

import pytest

from kipr_sdk import (
    AuthenticationError,
    ConflictError,
    FileBrief,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    Role,
    ValidationError,
    VersionBrief,
)


async def read_tree(version) -> dict:
    """Map path -> contents for every file of a version."""
    tree = {}
    for brief in await version.files.list():
        async with await brief.open() as f:
            tree[brief.path] = await f.read()
    return tree


async def write_file(version, path: str, contents: str) -> None:
    async with await version.files.create(path) as f:
        await f.update(contents)


class TestScenario:
    """The end-to-end walkthrough."""

    @pytest.mark.asyncio
    async def test_robot_code_walkthrough(self, client, alice):
        """Create, write, read back, restore, and confirm history is intact."""
        user = await client.login("alice", "secret")
        assert user.handle == alice.handle

        project = await user.projects.create("robot-code")
        v1 = await project.versions.create("v1")
        f = await v1.files.create("/main.c")
        await f.update("int main(){}")
        await f.close()

        brief = await v1.files.lookup("/main.c")
        f = await brief.open()
        assert await f.read() == "int main(){}"
        await f.close()

        restored = await project.versions.restore(v1.handle, "v1-copy")
        briefs = await project.versions.list()
        assert [b.name for b in briefs] == ["v1-copy", "v1"]
        assert briefs[0].handle == restored.handle
        assert briefs[1].handle == v1.handle

        original = await project.versions.open(v1.handle)
        assert await read_tree(original) == {"/main.c": "int main(){}"}
        assert await read_tree(restored) == {"/main.c": "int main(){}"}

        for resource in (original, restored, v1, project):
            await resource.close()


class TestVersions:
    """Version history semantics."""

    @pytest.mark.asyncio
    async def test_new_project_has_no_versions(self, alice):
        async with await alice.projects.create("empty") as project:
            assert await project.versions.list() == []
            with pytest.raises(NotFoundError):
                await project.versions.head()

    @pytest.mark.asyncio
    async def test_head_is_most_recent(self, alice):
        """Index 0 is always the most recently created or restored version."""
        async with await alice.projects.create("history") as project:
            v1 = await project.versions.create("v1", "first")
            v2 = await project.versions.create("v2")
            assert (await project.versions.head()).handle == v2.handle

            v3 = await project.versions.restore(v1.handle)
            briefs = await project.versions.list()
            assert [b.handle for b in briefs] == [v3.handle, v2.handle, v1.handle]
            assert briefs[0].name == "v1"
            assert briefs[0].description == "first"

            for v in (v1, v2, v3):
                await v.close()

    @pytest.mark.asyncio
    async def test_create_snapshots_head(self, alice):
        async with await alice.projects.create("snap") as project:
            async with await project.versions.create("v1") as v1:
                await write_file(v1, "/a.txt", "alpha")
            async with await project.versions.create("v2", "second") as v2:
                assert await read_tree(v2) == {"/a.txt": "alpha"}
                assert await v2.name() == "v2"
                assert await v2.description() == "second"

    @pytest.mark.asyncio
    async def test_restore_does_not_touch_source(self, alice):
        """Edits after a restore stay out of the restored-from version."""
        async with await alice.projects.create("restore") as project:
            v1 = await project.versions.create("v1")
            await write_file(v1, "/main.c", "one")
            await project.versions.create("v2")

            restored = await project.versions.restore(v1.handle, "again", "back to one")
            brief = await restored.files.lookup("/main.c")
            async with await brief.open() as f:
                await f.update("changed")

            assert await read_tree(v1) == {"/main.c": "one"}
            assert await restored.description() == "back to one"
            await restored.close()
            await v1.close()

    @pytest.mark.asyncio
    async def test_brief_restore(self, alice):
        async with await alice.projects.create("brief-restore") as project:
            await project.versions.create("v1")
            await project.versions.create("v2")
            briefs = await project.versions.list()
            async with await briefs[1].restore("v1-again") as version:
                assert await version.name() == "v1-again"
            assert (await project.versions.head()).name == "v1-again"

    @pytest.mark.asyncio
    async def test_history_is_read_only(self, alice):
        async with await alice.projects.create("ro") as project:
            v1 = await project.versions.create("v1")
            f = await v1.files.create("/x")
            await project.versions.create("v2")

            with pytest.raises(ConflictError):
                await f.update("late")
            with pytest.raises(ConflictError):
                await v1.files.create("/y")
            assert await f.read() == ""
            await f.close()
            await v1.close()

    @pytest.mark.asyncio
    async def test_unknown_version_not_found(self, alice):
        async with await alice.projects.create("a") as a, await alice.projects.create("b") as b:
            async with await b.versions.create("v1") as foreign:
                with pytest.raises(NotFoundError):
                    await a.versions.open(foreign.handle)
                with pytest.raises(NotFoundError):
                    await a.versions.restore(foreign.handle)
            with pytest.raises(NotFoundError):
                await a.versions.open("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_version_brief_open_matches_collection(self, alice):
        async with await alice.projects.create("briefs") as project:
            created = await project.versions.create("v1")
            (brief,) = await project.versions.list()
            assert isinstance(brief, VersionBrief)
            assert brief.project is project
            opened = await brief.open()
            assert opened.handle == created.handle
            assert await opened.name() == "v1"
            await opened.close()
            await created.close()


class TestFiles:
    """File semantics."""

    @pytest.fixture
    def contents(self):
        return "#include <kipr/wombat.h>\nint main() { return 0; }\n"

    @pytest.mark.asyncio
    async def test_update_then_read(self, alice, contents):
        async with await alice.projects.create("files") as project:
            async with await project.versions.create("v1") as version:
                async with await version.files.create("/src/main.c") as f:
                    assert await f.read() == ""
                    await f.update(contents)
                    assert await f.read() == contents
                    await f.update("")
                    assert await f.read() == ""

    @pytest.mark.asyncio
    async def test_move_then_path(self, alice):
        async with await alice.projects.create("move") as project:
            async with await project.versions.create("v1") as version:
                async with await version.files.create("/old.c") as f:
                    await f.move("/new/place.c")
                    assert await f.path() == "/new/place.c"

                with pytest.raises(NotFoundError):
                    await version.files.lookup("/old.c")
                paths = [b.path for b in await version.files.list()]
                assert paths == ["/new/place.c"]

    @pytest.mark.asyncio
    async def test_move_to_existing_path_conflicts(self, alice):
        async with await alice.projects.create("collide") as project:
            async with await project.versions.create("v1") as version:
                a = await version.files.create("/a")
                b = await version.files.create("/b")
                with pytest.raises(ConflictError):
                    await a.move("/b")
                assert await a.path() == "/a"
                await a.close()
                await b.close()

    @pytest.mark.asyncio
    async def test_create_existing_path_conflicts(self, alice):
        async with await alice.projects.create("dup") as project:
            async with await project.versions.create("v1") as version:
                async with await version.files.create("/main.c") as f:
                    await f.update("keep me")
                with pytest.raises(ConflictError):
                    await version.files.create("/main.c")
                assert await read_tree(version) == {"/main.c": "keep me"}

    @pytest.mark.asyncio
    async def test_invalid_path_rejected(self, alice):
        async with await alice.projects.create("paths") as project:
            async with await project.versions.create("v1") as version:
                for bad in ("relative.c", "/", "/dir/", "/a/../b"):
                    with pytest.raises(ValidationError):
                        await version.files.create(bad)

    @pytest.mark.asyncio
    async def test_files_scoped_to_version(self, alice):
        async with await alice.projects.create("scope") as project:
            v1 = await project.versions.create("v1")
            f = await v1.files.create("/only-in-v1")
            v2 = await project.versions.create("v2")

            # v2 received a copy with its own handle
            with pytest.raises(NotFoundError):
                await v2.files.open(f.handle)
            copy = await v2.files.lookup("/only-in-v1")
            assert copy.handle != f.handle

            for resource in (f, v1, v2):
                await resource.close()

    @pytest.mark.asyncio
    async def test_revisions_and_expected_revision(self, alice):
        async with await alice.projects.create("rev") as project:
            async with await project.versions.create("v1") as version:
                async with await version.files.create("/r.txt") as f:
                    assert await f.revision() == 0
                    assert await f.update("one") == 1
                    assert await f.update("two", expected_revision=1) == 2

                    with pytest.raises(ConflictError) as exc_info:
                        await f.update("stale", expected_revision=1)
                    assert exc_info.value.current_revision == 2
                    assert await f.read() == "two"

    @pytest.mark.asyncio
    async def test_last_write_wins(self, alice):
        async with await alice.projects.create("lww") as project:
            async with await project.versions.create("v1") as version:
                first = await version.files.create("/shared")
                second = await version.files.open(first.handle)
                await first.update("from first")
                await second.update("from second")
                assert await first.read() == "from second"
                await first.close()
                await second.close()

    @pytest.mark.asyncio
    async def test_file_brief(self, alice):
        async with await alice.projects.create("fb") as project:
            async with await project.versions.create("v1") as version:
                await write_file(version, "/b.c", "b")
                await write_file(version, "/a.c", "a")
                briefs = await version.files.list()
                assert [b.path for b in briefs] == ["/a.c", "/b.c"]
                assert all(isinstance(b, FileBrief) for b in briefs)
                assert briefs[0].version is version
                assert briefs[0].revision == 1


class TestClosedHandles:
    """Operations after close() fail with InvalidStateError."""

    @pytest.mark.asyncio
    async def test_closed_file(self, alice):
        async with await alice.projects.create("closed") as project:
            async with await project.versions.create("v1") as version:
                f = await version.files.create("/x")
                await f.close()
                assert f.closed
                for op in (f.read(), f.path(), f.update("y"), f.move("/z"), f.close()):
                    with pytest.raises(InvalidStateError):
                        await op

    @pytest.mark.asyncio
    async def test_closed_version(self, alice):
        async with await alice.projects.create("closed-v") as project:
            version = await project.versions.create("v1")
            await version.close()
            with pytest.raises(InvalidStateError):
                await version.files.list()
            with pytest.raises(InvalidStateError):
                await version.name()

    @pytest.mark.asyncio
    async def test_closed_project(self, alice):
        project = await alice.projects.create("closed-p")
        await project.close()
        with pytest.raises(InvalidStateError):
            await project.versions.list()
        with pytest.raises(InvalidStateError):
            await project.name()
        with pytest.raises(InvalidStateError):
            await project.close()

    @pytest.mark.asyncio
    async def test_close_after_logout(self, alice, store):
        """Logout releases the session's leases; a later close() still succeeds."""
        project = await alice.projects.create("p")
        version = await project.versions.create("v1")
        f = await version.files.create("/main.c")

        await alice.logout()
        assert store.leases() == []

        for resource in (f, version, project):
            await resource.close()
            assert resource.closed
        with pytest.raises(InvalidStateError):
            await project.close()

    @pytest.mark.asyncio
    async def test_delete_releases_leases(self, alice, store):
        """Deleting a project takes its leases with it; closing afterwards fails."""
        project = await alice.projects.create("gone")
        await project.versions.create("v1")
        await alice.projects.delete(project.handle)
        assert store.leases() == []
        with pytest.raises(InvalidStateError):
            await project.close()

    @pytest.mark.asyncio
    async def test_logout_inside_context_manager(self, alice, store):
        async with await alice.projects.create("p") as project:
            await alice.logout()
        assert project.closed
        assert store.leases() == []

    @pytest.mark.asyncio
    async def test_logout_keeps_other_sessions(self, client, alice, store):
        other = await client.login("alice", "secret")
        kept = await other.projects.create("kept")
        await alice.projects.create("released")

        await alice.logout()
        assert [lease.resource_id for lease in store.leases()] == [kept.handle]
        await kept.close()
        assert store.leases() == []

    @pytest.mark.asyncio
    async def test_context_manager_closes_on_error(self, alice):
        with pytest.raises(RuntimeError):
            async with await alice.projects.create("ctx") as project:
                raise RuntimeError("boom")
        assert project.closed


class TestProjects:
    """User project collection."""

    @pytest.mark.asyncio
    async def test_list_open_delete(self, alice):
        created = await alice.projects.create("robot-code")
        await created.close()

        (brief,) = await alice.projects.list()
        assert brief.name == "robot-code"
        assert brief.owner is alice
        assert brief.owner_handle == alice.handle

        async with await brief.open() as project:
            assert project.handle == created.handle
            assert await project.name() == "robot-code"

        await alice.projects.delete(created.handle)
        assert await alice.projects.list() == []
        with pytest.raises(NotFoundError):
            await alice.projects.open(created.handle)

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, alice):
        async with await alice.projects.create("same"):
            with pytest.raises(ConflictError):
                await alice.projects.create("same")

    @pytest.mark.asyncio
    async def test_other_users_projects_invisible(self, alice, bob):
        async with await alice.projects.create("private") as project:
            with pytest.raises(NotFoundError):
                await bob.projects.open(project.handle)
            assert await bob.projects.list() == []


class TestUsers:
    """User session operations."""

    @pytest.mark.asyncio
    async def test_name_and_email(self, alice):
        assert await alice.name() == "alice"
        assert await alice.email() == "alice@example.com"
        await alice.set_email("alice@kipr.org")
        assert await alice.email() == "alice@kipr.org"

    @pytest.mark.asyncio
    async def test_malformed_email_rejected(self, alice):
        with pytest.raises(ValidationError):
            await alice.set_email("not-an-email")
        assert await alice.email() == "alice@example.com"

    @pytest.mark.asyncio
    async def test_login_failures_are_generic(self, client, alice):
        with pytest.raises(AuthenticationError) as wrong_password:
            await client.login("alice", "wrong")
        with pytest.raises(AuthenticationError) as unknown_user:
            await client.login("mallory", "secret")
        assert wrong_password.value.message == unknown_user.value.message

    @pytest.mark.asyncio
    async def test_duplicate_username_conflicts(self, client, alice):
        with pytest.raises(ConflictError):
            await client.register("alice", "other", "other@example.com")

    @pytest.mark.asyncio
    async def test_logout_ends_session(self, alice):
        await alice.logout()
        with pytest.raises(AuthenticationError):
            await alice.name()


class TestOrganizations:
    """Organizations, membership and cascading delete."""

    @pytest.mark.asyncio
    async def test_creator_is_administrator(self, alice):
        org = await alice.organizations.create("botball", "KIPR Botball team")
        assert await org.name() == "botball"
        assert await org.description() == "KIPR Botball team"

        (brief,) = await alice.organizations.list()
        assert brief.role == Role.ADMINISTRATOR
        opened = await brief.open()
        assert opened.handle == org.handle

        (member,) = await org.users.list()
        assert member.handle == alice.handle
        assert member.role == Role.ADMINISTRATOR

    @pytest.mark.asyncio
    async def test_add_and_remove_members(self, alice, bob):
        org = await alice.organizations.create("team")
        await org.users.add(bob.handle)

        roles = {u.name: u.role for u in await org.users.list()}
        assert roles == {"alice": Role.ADMINISTRATOR, "bob": Role.MEMBER}

        bobs_view = await bob.organizations.open(org.handle)
        with pytest.raises(PermissionDeniedError):
            await bobs_view.users.remove(alice.handle)
        with pytest.raises(PermissionDeniedError):
            await bob.organizations.delete(org.handle)

        with pytest.raises(ConflictError):
            await org.users.add(bob.handle)

        await org.users.remove(bob.handle)
        with pytest.raises(NotFoundError):
            await bob.organizations.open(org.handle)

    @pytest.mark.asyncio
    async def test_last_administrator_cannot_leave(self, alice):
        org = await alice.organizations.create("solo")
        with pytest.raises(ConflictError):
            await org.users.remove(alice.handle)

    @pytest.mark.asyncio
    async def test_add_unknown_user_not_found(self, alice):
        org = await alice.organizations.create("ghosts")
        with pytest.raises(NotFoundError):
            await org.users.add("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_members_share_projects(self, alice, bob):
        org = await alice.organizations.create("shared")
        await org.users.add(bob.handle)
        async with await org.projects.create("team-bot") as project:
            async with await project.versions.create("v1") as version:
                await write_file(version, "/bot.c", "drive();")

        bobs_org = await bob.organizations.open(org.handle)
        (brief,) = await bobs_org.projects.list()
        async with await brief.open() as project:
            head = await project.versions.head()
            async with await head.open() as version:
                assert await read_tree(version) == {"/bot.c": "drive();"}

        with pytest.raises(PermissionDeniedError):
            await bobs_org.projects.delete(brief.handle)

    @pytest.mark.asyncio
    async def test_delete_cascades_to_projects(self, alice):
        org = await alice.organizations.create("doomed")
        project = await org.projects.create("gone-soon")
        await project.close()

        await alice.organizations.delete(org.handle)

        assert await alice.organizations.list() == []
        with pytest.raises(NotFoundError):
            await org.projects.open(project.handle)
        with pytest.raises(NotFoundError):
            await alice.organizations.open(org.handle)

    @pytest.mark.asyncio
    async def test_duplicate_organization_name(self, alice, bob):
        await alice.organizations.create("unique")
        with pytest.raises(ConflictError):
            await bob.organizations.create("unique")
