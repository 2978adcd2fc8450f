# debug_render.py
import asyncio
import sys

from shiori.agents.trip_normalizer import normalize_detail
from shiori.pdf import browser_session, html_to_pdf
from shiori.renderer import render_document


async def main():
    payload = {
        "trip": {
            "startDate": "2025-05-10",
            "endDate": "2025-05-12",
            "hotels": ["京都旅館 さくら", "大阪ベイホテル"],
            "purpose": "歴史ある街並みを歩き、日本の文化を体験する",
            "members": [
                {"name": "山田 太郎", "role": "leader", "episode": "朝いちばんに集合した"},
                {"name": "佐藤 花子", "role": "camera"},
                {"name": "鈴木 一郎", "role": "accountant"},
                {"name": "田中 次郎"},
            ],
            "allowance": [
                {
                    "title": "交通費",
                    "total": 4200,
                    "details": [
                        {"name": "新幹線", "amount": 3000},
                        {"name": "市バス", "amount": 1200},
                    ],
                },
                {"title": "食費", "total": "2500"},
            ],
        },
        "images": [
            {"clientId": "p1", "placeName": "金閣寺", "dateTime": "2025-05-10T10:15:00+09:00"},
            {"clientId": "p2", "placeName": "清水寺", "dateTime": "2025-05-10T14:30:00+09:00"},
            {"clientId": "p3", "placeName": "大阪城", "dateTime": "2025-05-11T09:00:00+09:00"},
            {"clientId": "p4", "placeName": "駅前のカフェ"},
        ],
    }

    trip = normalize_detail(payload)
    html = render_document(trip, narrative="三日間、たくさん歩きました。\n\nまた行きたいです。")
    with open("shiori_debug.html", "w", encoding="utf-8") as fh:
        fh.write(html)
    print("➡️ Wrote shiori_debug.html")

    # Pass --pdf to also print the booklet through the local Chromium.
    if "--pdf" in sys.argv:
        try:
            pdf = await html_to_pdf(html)
        finally:
            await browser_session.stop()
        with open("shiori_debug.pdf", "wb") as fh:
            fh.write(pdf)
        print(f"➡️ Wrote shiori_debug.pdf ({len(pdf)} bytes)")


if __name__ == "__main__":
    asyncio.run(main())
