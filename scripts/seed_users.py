import argparse

from results_app import create_app
from results_app.main.accounts import ROLES, ensure_user


def main():
    parser = argparse.ArgumentParser(description="Create or reset a back-office account.")
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", default="admin", choices=ROLES)
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        user, created = ensure_user(args.username, args.password, args.role)
        print(f"{user.username} -> role: {user.role}, created={created}, updated={not created}")


if __name__ == "__main__":
    main()
