from persfin import totp
from persfin.errors import RateLimited

TUTOR_BODY = {"messages": [{"role": "user", "content": "What is an ETF?"}]}


def enable_mfa(client, user):
    secret = client.post("/mfa", json={"action": "setup"}, headers=user["headers"]).get_json()["secret"]
    client.post("/mfa", json={"action": "verify", "token": totp.current_code(secret)}, headers=user["headers"])
    return secret


def test_requires_identity(client, completion):
    assert client.post("/tutor", json=TUTOR_BODY).status_code == 401
    assert completion.calls == []


def test_no_mfa_means_no_token_needed(client, user, completion):
    resp = client.post("/tutor", json=TUTOR_BODY, headers=user["headers"])
    assert resp.status_code == 200
    assert resp.get_json() == {"type": "chat", "content": completion.reply}
    system, messages = completion.calls[0]
    assert "beginner" in system
    assert messages == TUTOR_BODY["messages"]


def test_missing_token_is_403(client, user, completion):
    enable_mfa(client, user)
    resp = client.post("/tutor", json=TUTOR_BODY, headers=user["headers"])
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "MFA token required for this operation"}
    assert completion.calls == []


def test_wrong_token_is_403(client, user, completion):
    secret = enable_mfa(client, user)
    wrong = "000000" if totp.current_code(secret) != "000000" else "111111"
    resp = client.post("/tutor", json=TUTOR_BODY, headers={**user["headers"], "X-MFA-Token": wrong})
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Invalid MFA token"}
    assert completion.calls == []


def test_valid_token_runs_action(client, user, completion):
    secret = enable_mfa(client, user)
    headers = {**user["headers"], "X-MFA-Token": totp.current_code(secret)}
    resp = client.post("/investments/recommendations", json={"riskProfile": "aggressive"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json() == {"recommendations": completion.reply}
    assert "aggressive" in completion.calls[0][0]


def test_input_validation(client, user):
    assert client.post("/tutor", json={"messages": []}, headers=user["headers"]).status_code == 400
    too_long = {"messages": [{"role": "user", "content": "x" * 5001}]}
    assert client.post("/tutor", json=too_long, headers=user["headers"]).status_code == 400
    resp = client.post("/investments/recommendations", json={"investmentAmount": 0}, headers=user["headers"])
    assert resp.status_code == 400


def test_upstream_rate_limit(client, user, completion):
    completion.error = RateLimited()
    assert client.post("/tutor", json=TUTOR_BODY, headers=user["headers"]).status_code == 429
