"""Interactive Telegram authorization for the provider account.

A verification run needs an authorized session file; `deliveryscope login`
creates it once, after which runs reuse the session silently.
"""

from __future__ import annotations

import logging
import os
from getpass import getpass

import qrcode
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

QR_LOGIN_TIMEOUT_SECONDS = 120


def _print_qr(url: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def _two_factor_password() -> str:
    return os.getenv("TWO_FA_PASSWORD") or getpass("2FA password: ")


async def _login_with_qr(client: TelegramClient) -> None:
    qr_login = await client.qr_login()
    _print_qr(qr_login.url)
    await qr_login.wait(timeout=QR_LOGIN_TIMEOUT_SECONDS)


async def _login_with_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    code = input("Login code: ").strip()
    await client.sign_in(phone=phone, code=code)


def _login_method() -> str:
    method = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if method in {"qr", "phone"}:
        return method
    while True:
        choice = input("Login with [1] QR code or [2] phone code: ").strip()
        if choice == "1":
            return "qr"
        if choice == "2":
            return "phone"
        print("Please choose 1 or 2.")


async def authorize(client: TelegramClient, interactive: bool = True) -> None:
    """Ensure the client is authorized, prompting only when allowed."""

    if await client.is_user_authorized():
        return
    if not interactive:
        raise RuntimeError("Telegram session is not authorized; run `deliveryscope login` first")

    try:
        if _login_method() == "phone":
            await _login_with_phone(client)
        else:
            await _login_with_qr(client)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_two_factor_password())

    me = await client.get_me()
    LOGGER.info("Logged in as %s", getattr(me, "first_name", None) or getattr(me, "id", "unknown"))
