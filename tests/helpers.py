def register(client, username, role="tenant", password="s3cret-pass"):
    response = client.post(
        "/register",
        json={"username": username, "email": f"{username}@example.com", "password": password, "role": role},
    )
    assert response.status_code == 201, response.text
    data = response.json()
    return {"id": data["user"]["id"], "headers": {"Authorization": f"Bearer {data['token']}"}}
