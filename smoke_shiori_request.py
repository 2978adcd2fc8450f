import json
import sys

import requests

BASE_URL = "http://127.0.0.1:8080"

# --- test payload ---
detail = {
    "trip": {
        "startDate": "2025-05-10",
        "endDate": "2025-05-11",
        "purpose": "修学旅行",
        "members": [
            {"name": "山田 太郎", "role": "leader"},
            {"name": "佐藤 花子"}
        ]
    },
    "images": [
        {"clientId": "p1", "dateTime": "2025-05-10T10:15:00+09:00"}
    ]
}


def run_test(photo_path=None):
    url = f"{BASE_URL}/"
    files = [("detailJson", ("detail.json", json.dumps(detail, ensure_ascii=False).encode("utf-8"), "application/json"))]
    if photo_path:
        with open(photo_path, "rb") as fh:
            files.append(("images", (photo_path, fh.read(), "image/jpeg")))

    print(f"➡️ Sending POST {url}")
    print(json.dumps(detail, indent=2, ensure_ascii=False))

    resp = requests.post(url, files=files, timeout=200)

    print(f"\n⬅️ Status: {resp.status_code}")
    if resp.headers.get("content-type") == "application/pdf":
        with open("shiori.pdf", "wb") as fh:
            fh.write(resp.content)
        print(f"Saved shiori.pdf ({len(resp.content)} bytes)")
        return
    try:
        print(json.dumps(resp.json(), indent=2, ensure_ascii=False))
    except ValueError:
        print(resp.text)


if __name__ == "__main__":
    run_test(sys.argv[1] if len(sys.argv) > 1 else None)
