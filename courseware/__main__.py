from courseware.main import main

main()
