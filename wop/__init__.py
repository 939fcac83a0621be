"""Website Operator (WOP).

Level-triggered controller for the ``Website`` custom resource:
 - watches Websites and the Deployments/Services they own
 - derives the target Deployment and Service from each Website
 - creates what is missing and patches the one field it owns (the image)
 - retries transient conflicts with backoff, surfaces fatal ones to operators

Deleting a Website does not remove the resources it created.
"""
