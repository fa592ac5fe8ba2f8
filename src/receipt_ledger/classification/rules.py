"""Static debit-account rule table.

Each rule maps a set of keyword patterns to an expense account. Rules are
visited by priority (highest first); within equal priority, declaration order
in ACCOUNT_RULES decides.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

# Fallback when no rule matches and the model gave no suggestion (雑費 = misc. expense)
DEFAULT_DEBIT_ACCOUNT = "雑費"


@dataclass(frozen=True)
class AccountRule:
    """A target account with its keyword patterns and priority."""

    account: str
    patterns: tuple[re.Pattern, ...]
    priority: int


def make_pattern(keyword: str) -> re.Pattern:
    """Compile a keyword into a width/case-insensitive pattern.

    The keyword is NFKC-normalized and any whitespace run inside it matches
    zero or more whitespace characters in the haystack.
    """
    normalized = unicodedata.normalize("NFKC", keyword)
    parts = [re.escape(part) for part in normalized.split()]
    return re.compile(r"\s*".join(parts), re.IGNORECASE)


def _rule(account: str, priority: int, *keywords: str) -> AccountRule:
    return AccountRule(
        account=account,
        patterns=tuple(make_pattern(k) for k in keywords),
        priority=priority,
    )


ACCOUNT_RULES: tuple[AccountRule, ...] = (
    # Sales promotion
    _rule("販売促進費", 120, "NFCタグ", "NFC tag"),
    # Vehicle
    _rule(
        "車両費",
        110,
        "EneJet",
        "ENEOS",
        "apollo station",
        "アポロステーション",
        "COSMO",
        "ガソリン",
        "レギュラー",
        "軽油",
        "洗車",
        "駐車",
        "駐車料金",
        "パーキング",
        "リパーク",
        "カープレミア",
    ),
    # Travel and transport
    _rule(
        "旅費交通費",
        100,
        "ETC",
        "NEXCO",
        "高速料金",
        "通行料金",
        "地下鉄",
        "タクシー",
        "Goタクシー",
        "北都交通",
        "レンタカー",
        "航空券",
        "AIRDO",
        "エアドゥ",
        "宿泊",
        "ホテル",
        "楽天トラベル",
    ),
    # Meetings
    _rule(
        "会議費",
        95,
        "BizSpot",
        "BizSPOT",
        "アクセアカフェ",
        "3時間パック",
        "チェックイン利用料",
        "カフェ利用料",
        "コワーキング",
        "会議室利用",
        "打合せスペース",
    ),
    # Communication
    _rule(
        "通信費",
        90,
        "ChatGPT",
        "OpenAI",
        "Gemini",
        "Google AI Pro",
        "Google One",
        "YouTube Premium",
        "Youtube",
        "YouTube",
        "Google Play",
        "Vercel",
        "レンタルサーバー",
        "ドメイン",
        "DNS",
        "お名前ドットコム",
        "ヤフージャパン",
    ),
    # Entertainment
    _rule(
        "接待交際費",
        80,
        "LINEギフト",
        "ラインギフト",
        "LINEEC",
        "LINE EC",
        "LINE　EC",
        "Wolt",
        "スシロー",
        "はま寿司",
        "サイゼリヤ",
        "ケンタッキー",
        "びっくりドンキー",
        "串鳥",
        "しゃぶしゃぶ",
        "東京カルビ",
        "mister Donut",
        "ミスド",
        "洋菓子",
        "たい焼き",
        "キャラメルサンド",
        "手土産",
    ),
    # Supplies
    _rule(
        "消耗品費",
        70,
        "名刺",
        "Canva名刺",
        "イヤホン",
        "WiFiルーター",
        "ルーター",
        "DCM",
        "JoyfulAK",
        "ニトリ",
        "ユニクロ",
        "マウス",
        "Logitech",
        "周辺機器",
        "Kindle",
    ),
    # Utilities
    _rule(
        "水道光熱費",
        60,
        "ソフトバンクでんき",
        "北海道ガス",
        "ホッカイドウガス",
        "電気",
        "ガス",
        "水道",
        "富士山の名水",
    ),
    # Books
    _rule(
        "新聞図書費",
        50,
        "くまざわ書店",
        "コーチャンフォー",
        "過去問題集",
        "児童書",
        "決算書",
        "書籍",
        "本",
        "参考書",
    ),
    # Fees
    _rule("支払手数料", 40, "切手", "印紙", "法務省", "手数料"),
    # Rent
    _rule("地代家賃", 30, "家賃", "賃料", "レンタルオフィス", "オフィス賃貸", "ライフカード"),
    # Outsourcing
    _rule(
        "外注工賃費",
        20,
        "ラコル",
        "Lacrou",
        "Lacoru",
        "たかおさま",
        "業務委託",
        "外注",
    ),
)
