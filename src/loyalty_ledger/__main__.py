import uvicorn


def main() -> None:
    uvicorn.run("loyalty_ledger.app:create_app", factory=True, reload=False)


if __name__ == "__main__":
    main()
