"""
API tests for the user routes.
"""


async def test_get_me(client, current_user, employee, acme):
    current_user["id"] = employee.id

    response = await client.get("/users/me")

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "emma@acme.com"
    assert data["organization"]["slug"] == acme.slug


async def test_update_me(client, current_user, employee):
    current_user["id"] = employee.id

    response = await client.patch("/users/me", json={"phone": "+1 555 0100"})

    assert response.status_code == 200
    assert response.json()["phone"] == "+1 555 0100"


async def test_list_members_needs_view_users(client, current_user, employee):
    current_user["id"] = employee.id

    response = await client.get("/users/")

    assert response.json()["success"] is False
    assert response.json()["reason"] == "view_users or manage_users"


async def test_list_members(client, current_user, manager, employee, outsider):
    current_user["id"] = manager.id

    response = await client.get("/users/")

    assert response.status_code == 200
    assert {member["id"] for member in response.json()} == {manager.id, employee.id}


async def test_change_member_role(client, current_user, manager, employee):
    current_user["id"] = manager.id

    response = await client.patch(f"/users/{employee.id}/role", json={"role": "manager"})

    assert response.status_code == 200
    assert response.json()["role"] == "manager"


async def test_manager_cannot_touch_super_admin(client, current_user, manager, super_admin):
    current_user["id"] = manager.id

    response = await client.patch(f"/users/{super_admin.id}/role", json={"role": "employee"})

    assert response.json()["success"] is False
    assert response.json()["reason"] == "super_admin_target"


async def test_cannot_change_own_role(client, current_user, manager):
    current_user["id"] = manager.id

    response = await client.patch(f"/users/{manager.id}/role", json={"role": "employee"})

    assert response.json()["reason"] == "self_modification"


async def test_deactivate_member(client, current_user, manager, employee):
    current_user["id"] = manager.id

    response = await client.delete(f"/users/{employee.id}")

    assert response.json() == {"success": True, "message": "User deactivated successfully"}
    current_user["id"] = employee.id
    response = await client.get("/permissions/my-permissions")
    assert response.json()["permissions"] == []


async def test_deactivate_member_of_other_organization(client, current_user, manager, outsider):
    current_user["id"] = manager.id

    response = await client.delete(f"/users/{outsider.id}")

    assert response.json()["reason"] == "target_unavailable"
