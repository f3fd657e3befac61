#!/usr/bin/env python3
"""
KIPR Demo - Shows projects, versions, files and restore.

This demo runs against the in-memory backend so no service is needed.
Set KIPR_DEMO_URL to run the same walkthrough against a REST service.
"""

import asyncio
import os

from kipr_sdk import ConflictError, MemoryClient, RestClient


async def main():
    print("=" * 60)
    print("KIPR Demo - Projects, Versions and Files")
    print("=" * 60)
    print()

    url = os.environ.get("KIPR_DEMO_URL")
    client = RestClient(url) if url else MemoryClient()
    print(f"[Setup] Backend: {url or 'in-memory'}")

    async with client:
        # 1. Account
        print("\n[Step 1] Registering alice...")
        user = await client.register("alice", "secret", "alice@example.com")
        print(f"  - Handle: {user.handle}")
        print(f"  - Email:  {await user.email()}")

        # 2. Project and first version
        print("\n[Step 2] Creating project 'robot-code' with version v1...")
        async with await user.projects.create("robot-code") as project:
            v1 = await project.versions.create("v1", "First drive program")
            async with await v1.files.create("/main.c") as f:
                revision = await f.update("int main(){}")
                print(f"  - /main.c written (revision {revision})")

            # 3. Read back through a Brief
            print("\n[Step 3] Reading /main.c back...")
            brief = await v1.files.lookup("/main.c")
            async with await brief.open() as f:
                print(f"  - Contents: {await f.read()!r}")

            # 4. Restore
            print("\n[Step 4] Restoring v1 as v1-copy...")
            restored = await project.versions.restore(v1.handle, "v1-copy")
            print("-" * 50)
            for i, version in enumerate(await project.versions.list()):
                marker = "HEAD" if i == 0 else "    "
                print(f"  {marker} {version.name:<10} {version.handle}")
            print()

            # 5. History is read-only
            print("[Step 5] Writing to v1 after restore...")
            try:
                await v1.files.create("/late.c")
            except ConflictError as e:
                print(f"  - Rejected: {e.message}")

            # 6. Edit HEAD, original untouched
            print("\n[Step 6] Editing HEAD leaves v1 untouched...")
            brief = await restored.files.lookup("/main.c")
            async with await brief.open() as f:
                await f.update("int main(){ drive(); }")
            for version in (restored, v1):
                brief = await version.files.lookup("/main.c")
                async with await brief.open() as f:
                    print(f"  - {await version.name():<8} {await f.read()!r}")

            await restored.close()
            await v1.close()

        # 7. Organizations
        print("\n[Step 7] Creating organization 'botball'...")
        org = await user.organizations.create("botball", "KIPR Botball team")
        async with await org.projects.create("team-bot"):
            pass
        for member in await org.users.list():
            print(f"  - Member: {member.name} ({member.role.value})")
        for project_brief in await org.projects.list():
            print(f"  - Project: {project_brief.name}")

        await user.logout()

    print()
    print("=" * 60)
    print("Demo Complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
