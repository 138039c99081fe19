from gmsa_webhook.main import main

main()
