#!/usr/bin/env python3
"""
Скрипт для настройки подключения к Supabase в проекте
"""

import os
import re

ENV_PATH = '.env'


def render_env(database_url: str, webapp_url: str = "", payment_verification: str = "none",
               chain_rpc_url: str = "") -> str:
    """Содержимое нового файла .env"""
    return f"""# Supabase Database Configuration
DATABASE_URL={database_url}

# Storefront Configuration
WEBAPP_PUBLIC_URL={webapp_url}

# Payment verification: none | evm_rpc
PAYMENT_VERIFICATION={payment_verification}
CHAIN_RPC_URL={chain_rpc_url}

# Winner draw: entry | ticket
DRAW_WEIGHTING=entry
WINNER_SWEEP_INTERVAL=60

# Debug mode
DEBUG=false
"""


def set_env_value(content: str, key: str, value: str) -> str:
    """Заменяет значение переменной в содержимом .env или добавляет ее в конец"""
    pattern = re.compile(rf'^{re.escape(key)}=.*$', re.MULTILINE)
    if pattern.search(content):
        return pattern.sub(lambda _: f'{key}={value}', content)
    if content and not content.endswith('\n'):
        content += '\n'
    return content + f'{key}={value}\n'


def ask_database_url() -> str:
    print("\n=== Данные от Supabase ===")
    print("1. Откройте https://supabase.com/dashboard")
    print("2. Выберите ваш проект")
    print("3. Перейдите в Settings → Database")
    print("4. Скопируйте строку подключения из секции 'Connection string' (Transaction pooler)")
    print()
    return input("Вставьте строку подключения к Supabase: ").strip()


def create_env_file() -> bool:
    """Создает файл .env с настройками для Supabase"""
    print("=== Настройка Chain Raffle ===")
    print()
    print("Адрес витрины (например: https://raffles.example.com), Enter - http://localhost:3000")
    webapp_url = input("WEBAPP_PUBLIC_URL: ").strip() or "http://localhost:3000"

    database_url = ask_database_url()

    print("\nJSON-RPC узел для проверки оплаты (Enter - без проверки)")
    chain_rpc_url = input("CHAIN_RPC_URL: ").strip()
    payment_verification = "evm_rpc" if chain_rpc_url else "none"

    env_content = render_env(database_url, webapp_url, payment_verification, chain_rpc_url)
    try:
        with open(ENV_PATH, 'w', encoding='utf-8') as f:
            f.write(env_content)
    except OSError as e:
        print(f"\n❌ Ошибка при создании файла .env: {e}")
        return False

    print("\n✅ Файл .env успешно создан!")
    return True


def update_existing_env() -> bool:
    """Обновляет DATABASE_URL в существующем файле .env"""
    if not os.path.exists(ENV_PATH):
        print("Файл .env не найден. Создаем новый...")
        return create_env_file()

    with open(ENV_PATH, 'r', encoding='utf-8') as f:
        content = f.read()

    new_content = set_env_value(content, 'DATABASE_URL', ask_database_url())
    try:
        with open(ENV_PATH, 'w', encoding='utf-8') as f:
            f.write(new_content)
    except OSError as e:
        print(f"\n❌ Ошибка при обновлении файла .env: {e}")
        return False

    print("\n✅ Файл .env успешно обновлен!")
    return True


def main():
    print("🚀 Настройка Supabase для Chain Raffle")
    print("=" * 50)

    choice = input("Выберите действие:\n1. Создать новый файл .env\n2. Обновить существующий файл .env\nВведите 1 или 2: ").strip()

    if choice == '1':
        success = create_env_file()
    elif choice == '2':
        success = update_existing_env()
    else:
        print("Неверный выбор!")
        return

    if success:
        print("\n🎉 Настройка завершена!")
        print("\nСледующие шаги:")
        print("1. Примените миграции: python run_migrations.py")
        print("2. Запустите API: python main.py")
        print("\nЕсли возникнут ошибки, проверьте:")
        print("- Доступность базы данных Supabase")
        print("- Настройки сети (порт 6543 должен быть доступен)")


if __name__ == "__main__":
    main()
