"""create chat_quick_replies table with the default replies

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_DEFAULT_REPLIES = [
    {
        "id": "qr_greeting",
        "category": "greeting",
        "title_uz": "Salomlashish",
        "title_ru": "Приветствие",
        "title_en": "Greeting",
        "content_uz": "Salom! ORZUTECH qo'llab-quvvatlash xizmati. Sizga qanday yordam bera olamiz?",
        "content_ru": "Здравствуйте! Служба поддержки ORZUTECH. Чем можем помочь?",
        "content_en": "Hello! ORZUTECH support service. How can we help you?",
        "sort_order": 1,
    },
    {
        "id": "qr_delivery",
        "category": "delivery",
        "title_uz": "Yetkazib berish",
        "title_ru": "Доставка",
        "title_en": "Delivery",
        "content_uz": (
            "Yetkazib berish Buxoro shahri bo'ylab bepul. "
            "Boshqa hududlarga BTS pochta orqali 35,000 so'mdan."
        ),
        "content_ru": (
            "Доставка по городу Бухара бесплатная. "
            "В другие регионы через BTS почту от 35,000 сум."
        ),
        "content_en": (
            "Delivery is free within Bukhara city. "
            "To other regions via BTS postal from 35,000 UZS."
        ),
        "sort_order": 2,
    },
    {
        "id": "qr_warranty",
        "category": "warranty",
        "title_uz": "Kafolat",
        "title_ru": "Гарантия",
        "title_en": "Warranty",
        "content_uz": (
            "Barcha mahsulotlarimizga rasmiy kafolat beriladi. "
            "Kafolat muddati mahsulotga qarab 6 oydan 2 yilgacha."
        ),
        "content_ru": (
            "На всю нашу продукцию предоставляется официальная гарантия. "
            "Срок гарантии от 6 месяцев до 2 лет."
        ),
        "content_en": (
            "All our products come with official warranty. "
            "Warranty period ranges from 6 months to 2 years."
        ),
        "sort_order": 3,
    },
    {
        "id": "qr_payment",
        "category": "payment",
        "title_uz": "To'lov",
        "title_ru": "Оплата",
        "title_en": "Payment",
        "content_uz": (
            "Naqd pul, plastik karta, Click va Payme orqali to'lash mumkin. "
            "Nasiya ham mavjud!"
        ),
        "content_ru": (
            "Оплата наличными, картой, через Click и Payme. "
            "Также доступна рассрочка!"
        ),
        "content_en": (
            "Payment by cash, card, Click and Payme accepted. "
            "Installment plans available!"
        ),
        "sort_order": 4,
    },
    {
        "id": "qr_closing",
        "category": "closing",
        "title_uz": "Xayr",
        "title_ru": "Прощание",
        "title_en": "Goodbye",
        "content_uz": (
            "Murojaat uchun rahmat! Yana savollaringiz bo'lsa, bemalol yozing."
        ),
        "content_ru": "Спасибо за обращение! Если будут еще вопросы, пишите.",
        "content_en": (
            "Thank you for reaching out! "
            "Feel free to write if you have more questions."
        ),
        "sort_order": 5,
    },
]


def upgrade() -> None:
    table = op.create_table(
        "chat_quick_replies",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column(
            "category",
            sa.String(length=32),
            server_default="general",
            nullable=False,
        ),
        sa.Column("title_uz", sa.String(length=255), nullable=False),
        sa.Column("title_ru", sa.String(length=255), nullable=False),
        sa.Column("title_en", sa.String(length=255), nullable=False),
        sa.Column("content_uz", sa.Text(), nullable=False),
        sa.Column("content_ru", sa.Text(), nullable=False),
        sa.Column("content_en", sa.Text(), nullable=False),
        sa.Column("sort_order", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.true(), nullable=False
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_chat_quick_replies"),
    )
    op.create_index(
        "ix_chat_quick_replies_active_sort",
        "chat_quick_replies",
        ["is_active", "sort_order"],
    )
    op.bulk_insert(table, _DEFAULT_REPLIES)


def downgrade() -> None:
    op.drop_index(
        "ix_chat_quick_replies_active_sort", table_name="chat_quick_replies"
    )
    op.drop_table("chat_quick_replies")
