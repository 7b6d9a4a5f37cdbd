from smtp_test_server.smtp.server import main

if __name__ == "__main__":
    main()
