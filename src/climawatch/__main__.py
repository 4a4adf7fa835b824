from climawatch.main import main

main()
