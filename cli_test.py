import requests

chat_id = "cli-test-001"
base_url = "http://localhost:8000"

print('Digite mensagens ou comandos (/start, /cadastro, /login...). "foto:<id>" simula uma foto.')

while True:
    msg = input("Você: ")
    if msg.lower() in ["sair", "exit"]:
        break

    if msg.startswith("foto:"):
        resp = requests.post(
            f"{base_url}/chat/photo",
            json={"chat_id": chat_id, "file_id": msg[len("foto:"):].strip() or "foto-cli"}
        )
    else:
        resp = requests.post(
            f"{base_url}/chat",
            json={"chat_id": chat_id, "message": msg}
        )

    body = resp.json()
    print("Bot:", body["reply"])
    for row in body.get("keyboard", []):
        print("   ", " | ".join(f"[{b['text']} → {b['callback_data']}]" for b in row))
